"""
database.py — The MongoDB side of the feed (Motor, async).

COLLECTIONS
───────────
  news_cache           L2 copy of the canonical "all" entry     MongoCacheStore
  priority_posts       editor-desk items, read-only here         PriorityPostStore
  activity_baselines   expected posts per 6 h window, per region BaselineProvider
  post_activity_logs   one snapshot per 6 h bucket and region    ActivityLogger

None of these is a system of record. When the database is unreachable the
feed keeps serving from L1 and live fetches: `get_db()` returns None and
every store treats that as "nothing stored".

Stores never hold the Motor handle themselves; they receive `get_db` as a
db_provider and call it per operation, so a reconnect is picked up without
rebuilding the service.
"""

import logging
from typing import Optional

import certifi
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, IndexModel
from pymongo.errors import PyMongoError

from watchfeed.core.config import settings

logger = logging.getLogger(__name__)

# news_cache is addressed by _id only and needs nothing beyond the default index.
INDEXES: dict[str, list[IndexModel]] = {
    "priority_posts": [
        IndexModel([("active", ASCENDING), ("region", ASCENDING), ("created_at", DESCENDING)]),
    ],
    "activity_baselines": [
        IndexModel([("region", ASCENDING)], unique=True),
    ],
    "post_activity_logs": [
        IndexModel([("bucket_timestamp", DESCENDING), ("region", ASCENDING)], unique=True),
    ],
}


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    """Create the query indexes the stores rely on (idempotent)."""
    for collection, models in INDEXES.items():
        await db[collection].create_indexes(models)
    logger.debug("Indexes ensured on %s", ", ".join(INDEXES))


class MongoConnection:
    """Client + selected database; both None while disconnected."""

    def __init__(self) -> None:
        self.client: Optional[AsyncIOMotorClient] = None
        self.db: Optional[AsyncIOMotorDatabase] = None

    @property
    def connected(self) -> bool:
        return self.db is not None

    async def open(self, uri: str, db_name: str, timeout_ms: int = 5000) -> bool:
        """
        Connect, ping and ensure indexes. Returns False (degraded mode)
        instead of raising when the server cannot be reached.
        """
        try:
            client = AsyncIOMotorClient(uri, serverSelectionTimeoutMS=timeout_ms, tlsCAFile=certifi.where())
            await client.admin.command("ping")
            await ensure_indexes(client[db_name])
        except PyMongoError as exc:
            logger.warning("MongoDB unavailable (%s); running without the durable tier", exc)
            self.client = self.db = None
            return False

        self.client, self.db = client, client[db_name]
        logger.info("MongoDB connected (db: %s)", db_name)
        return True

    async def ping(self) -> bool:
        if self.client is None:
            return False
        try:
            await self.client.admin.command("ping")
        except PyMongoError as exc:
            logger.warning("DB ping failed: %s", exc)
            return False
        return True

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
            logger.info("MongoDB connection closed")
        self.client = self.db = None

    def database(self) -> Optional[AsyncIOMotorDatabase]:
        return self.db


db_client = MongoConnection()

# db_provider handed to every store
get_db = db_client.database


async def connect_to_mongo() -> None:
    """Startup hook (lifespan)."""
    await db_client.open(settings.mongo_uri, settings.mongo_db_name)


async def close_mongo_connection() -> None:
    """Shutdown hook (lifespan)."""
    db_client.close()
