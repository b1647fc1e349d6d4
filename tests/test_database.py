"""
test_database.py — Connection lifecycle, degraded mode and index setup.

Motor is replaced by MagicMock/AsyncMock; nothing here needs a server.
"""

from unittest.mock import AsyncMock, MagicMock, patch

from pymongo.errors import ServerSelectionTimeoutError

from watchfeed.core.database import INDEXES, MongoConnection, ensure_indexes, get_db


class RecordingDB(dict):
    def __missing__(self, name):
        collection = MagicMock()
        collection.create_indexes = AsyncMock()
        self[name] = collection
        return collection


def _motor_client(db, ping=None):
    client = MagicMock()
    client.admin.command = ping or AsyncMock(return_value={"ok": 1})
    client.__getitem__.return_value = db
    return client


class TestEnsureIndexes:
    async def test_creates_indexes_for_every_store_collection(self):
        db = RecordingDB()
        await ensure_indexes(db)
        for name in ("priority_posts", "activity_baselines", "post_activity_logs"):
            db[name].create_indexes.assert_awaited_once_with(INDEXES[name])

    def test_bucket_and_baseline_indexes_are_unique(self):
        assert INDEXES["post_activity_logs"][0].document["unique"] is True
        assert INDEXES["activity_baselines"][0].document["unique"] is True


class TestMongoConnection:
    async def test_open_pings_and_prepares_indexes(self):
        db = RecordingDB()
        conn = MongoConnection()
        with patch("watchfeed.core.database.AsyncIOMotorClient", return_value=_motor_client(db)):
            assert await conn.open("mongodb://localhost:27017", "watchfeed") is True

        assert conn.connected
        assert conn.database() is db
        db["post_activity_logs"].create_indexes.assert_awaited_once()
        assert await conn.ping() is True

    async def test_unreachable_server_leaves_degraded_mode(self):
        down = AsyncMock(side_effect=ServerSelectionTimeoutError("no servers"))
        conn = MongoConnection()
        with patch("watchfeed.core.database.AsyncIOMotorClient", return_value=_motor_client(RecordingDB(), down)):
            assert await conn.open("mongodb://nowhere:27017", "watchfeed") is False

        assert not conn.connected
        assert conn.database() is None
        assert conn.client is None
        assert await conn.ping() is False

    async def test_close_resets_handles(self):
        db = RecordingDB()
        client = _motor_client(db)
        conn = MongoConnection()
        with patch("watchfeed.core.database.AsyncIOMotorClient", return_value=client):
            await conn.open("mongodb://localhost:27017", "watchfeed")
        conn.close()

        client.close.assert_called_once()
        assert conn.database() is None

    def test_provider_is_none_while_disconnected(self):
        # mock_db clears the module-level connection for every test
        assert get_db() is None
