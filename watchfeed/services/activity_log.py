"""
activity_log.py — 6-hour activity snapshots for rolling averages.

After every successful live fetch of "all" the news service records one
snapshot into `post_activity_logs`, keyed by (bucket start, region):

  {
    "bucket_timestamp": ISODate  # 00:00 / 06:00 / 12:00 / 18:00 UTC
    "region": "all",
    "post_count": 412,           # highest count seen in this bucket
    "source_count": 310,
    "region_breakdown": {"us": 120, ...},
    "platform_breakdown": {"bluesky": 300, ...},
    "fetch_duration_ms": 5120,
    "recorded_at": ISODate
  }

The external measurement job turns these into `activity_baselines`.
Logging is best-effort and must never break a request.
"""

import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Callable, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from watchfeed.models.post import Post

logger = logging.getLogger(__name__)


def bucket_start(moment: datetime) -> datetime:
    moment = moment.astimezone(timezone.utc)
    return moment.replace(hour=(moment.hour // 6) * 6, minute=0, second=0, microsecond=0)


class ActivityLogger:
    collection_name = "post_activity_logs"

    def __init__(self, db_provider: Callable[[], Optional[AsyncIOMotorDatabase]]) -> None:
        self._db_provider = db_provider

    async def log_snapshot(
        self,
        region: str,
        posts: list[Post],
        source_count: int,
        fetch_duration_ms: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> None:
        db = self._db_provider()
        if db is None:
            return

        now = now or datetime.now(tz=timezone.utc)
        bucket = bucket_start(now)
        try:
            await db[self.collection_name].update_one(
                {"bucket_timestamp": bucket, "region": region},
                {
                    "$max": {"post_count": len(posts)},
                    "$set": {
                        "source_count": source_count,
                        "region_breakdown": dict(Counter(p.region for p in posts)),
                        "platform_breakdown": dict(Counter(p.platform for p in posts)),
                        "fetch_duration_ms": fetch_duration_ms,
                        "recorded_at": now,
                    },
                },
                upsert=True,
            )
            logger.debug("Logged activity snapshot: %s %s → %d posts", bucket.isoformat(), region, len(posts))
        except PyMongoError as exc:
            logger.error("Failed to log activity snapshot: %s", exc)
