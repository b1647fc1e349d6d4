"""
priority_posts.py — Editor-curated posts from the `priority_posts` collection.

Document shape (written by the editor desk, read-only here):
  {
    "_id": ObjectId, "title": str, "content": str,
    "tag": "breaking" | "pinned" | "context" | "event",
    "region": "all" | "<region id>", "url": str | null,
    "active": true, "expires_at": ISODate | null, "created_at": ISODate
  }

A store failure degrades to "no priority posts"; it never fails /news.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError
from pymongo.errors import PyMongoError

from watchfeed.models.post import PriorityPost
from watchfeed.models.region import Region

logger = logging.getLogger(__name__)


class PriorityPostStore:
    collection_name = "priority_posts"

    def __init__(self, db_provider: Callable[[], Optional[AsyncIOMotorDatabase]], max_items: int = 50) -> None:
        self._db_provider = db_provider
        self.max_items = max_items

    @staticmethod
    def build_query(region: str, now: datetime) -> dict:
        query: dict = {
            "active": True,
            "$or": [{"expires_at": None}, {"expires_at": {"$gt": now}}],
        }
        if region != Region.ALL.value:
            query["region"] = {"$in": [region, Region.ALL.value]}
        return query

    async def get_active(self, region: str, now: Optional[datetime] = None) -> list[PriorityPost]:
        db = self._db_provider()
        if db is None:
            return []

        query = self.build_query(region, now or datetime.now(tz=timezone.utc))
        try:
            cursor = db[self.collection_name].find(query).sort("created_at", -1)
            docs = await cursor.to_list(length=self.max_items)
        except PyMongoError as exc:
            logger.error("Failed to fetch priority posts: %s", exc)
            return []

        posts = []
        for doc in docs:
            try:
                posts.append(PriorityPost(id=str(doc.pop("_id")), **doc))
            except (ValidationError, TypeError) as exc:
                logger.warning("Skipping malformed priority post: %s", exc)
        return posts
