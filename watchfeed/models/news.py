"""
news.py — Response models for GET /news.

Normal response (200):
  items, activity, sourceActivity, fetchedAt, totalItems, priorityCount,
  sourcesCount, hoursWindow, isIncremental, fromCache

Degraded response (200, refresh failed but a cache of some age exists):
  same keys plus partial=true, stale=true, error="Partial data - refresh failed"
"""

from datetime import datetime
from typing import Optional

from pydantic import Field

from watchfeed.models.activity import RegionActivity, SourceActivityProfile
from watchfeed.models.post import CamelModel, Post


class NewsResponse(CamelModel):
    items: list[Post]
    activity: dict[str, RegionActivity]
    source_activity: dict[str, SourceActivityProfile] = Field(default_factory=dict)
    fetched_at: datetime
    total_items: int
    priority_count: int = 0
    sources_count: int
    hours_window: int
    is_incremental: bool = False
    from_cache: bool = False

    # Only set on the stale fallback path
    partial: Optional[bool] = None
    stale: Optional[bool] = None
    error: Optional[str] = None


class WarmupResponse(CamelModel):
    accepted: bool
    key: str
