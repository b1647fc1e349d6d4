"""
news_service.py — Orchestrates one GET /news request.

  registry ──► BatchScheduler ──► dedupe_and_sort ──► CacheService (L1/L2)
                                                          │
  PriorityPostStore ─────────────────────► compose ◄──────┘
                                              │
  BaselineProvider ──► compute_region_activity(full window)
                       compute_source_activity(regular feed)

The live loader (`load`) is what CacheService calls on a miss. For "all" it
also records an activity snapshot in the background.

The service is a lazily built process-wide singleton exposed through the
`get_news_service` dependency, so routes never import it directly and tests
can swap it via app.dependency_overrides.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from watchfeed.core.config import settings
from watchfeed.core.database import get_db
from watchfeed.fetchers.registry import build_fetchers
from watchfeed.models.news import NewsResponse
from watchfeed.models.post import CacheEntry, Post
from watchfeed.models.region import Region
from watchfeed.services.activity import BaselineProvider, compute_region_activity, compute_source_activity
from watchfeed.services.activity_log import ActivityLogger
from watchfeed.services.batch_scheduler import BatchScheduler
from watchfeed.services.cache import CacheService, DurableStore, MongoCacheStore
from watchfeed.services.dedup import dedupe_and_sort
from watchfeed.services.feed_composer import compose, filter_by_region, filter_by_time_window
from watchfeed.services.priority_posts import PriorityPostStore
from watchfeed.services.source_registry import SourceRegistry

logger = logging.getLogger(__name__)

PARTIAL_DATA_ERROR = "Partial data - refresh failed"


class NewsService:
    def __init__(
        self,
        registry: SourceRegistry,
        scheduler: BatchScheduler,
        baselines: BaselineProvider,
        priority_store: PriorityPostStore,
        activity_logger: Optional[ActivityLogger] = None,
        durable: Optional[DurableStore] = None,
        activity_window_hours: int = 6,
        **cache_options,
    ) -> None:
        self.registry = registry
        self.scheduler = scheduler
        self.baselines = baselines
        self.priority_store = priority_store
        self.activity_logger = activity_logger
        self.activity_window_hours = activity_window_hours
        self.cache = CacheService(self.load, durable=durable, **cache_options)

    # ── Live loader ──────────────────────────────────────────────────────────

    async def load(self, region: str) -> list[Post]:
        """Fetch every source for *region*; raises AggregationFailure if all fail."""
        sources = self.registry.sources_for_region(region)
        posts, report = await self.scheduler.fetch_all(sources)
        report.raise_if_all_failed()
        ordered = dedupe_and_sort(posts)
        logger.info("Fetched %d unique posts for %s (%d/%d sources ok)",
                    len(ordered), region, report.succeeded, report.attempted)

        if region == Region.ALL.value and self.activity_logger is not None:
            window = filter_by_time_window(ordered, self.activity_window_hours)
            self.cache.spawn(
                self.activity_logger.log_snapshot(region, window, len(sources), report.duration_ms),
                name="activity-log",
            )
        return ordered

    # ── Request path ─────────────────────────────────────────────────────────

    async def get_news(
        self,
        region: str,
        hours: int,
        limit: int,
        since: Optional[datetime] = None,
        refresh: bool = False,
    ) -> NewsResponse:
        entry, from_cache = await self.cache.get_feed(region, force=refresh)
        now = datetime.now(tz=timezone.utc)

        priority = [p.to_post() for p in await self.priority_store.get_active(region, now=now)]
        feed = compose(
            filter_by_region(entry.posts, region),
            priority,
            window_hours=hours,
            since=since,
            limit=limit,
            now=now,
        )
        baselines = await self.baselines.get_baselines(now)

        return NewsResponse(
            items=feed.items,
            activity=compute_region_activity(feed.window_posts, baselines),
            source_activity=compute_source_activity(
                feed.regular_posts, self.registry.by_id(), window_hours=self.activity_window_hours,
            ),
            fetched_at=now,
            total_items=feed.total_items,
            priority_count=feed.priority_count,
            sources_count=len(self.registry.sources_for_region(region)),
            hours_window=hours,
            is_incremental=feed.is_incremental,
            from_cache=from_cache,
        )

    async def get_fallback(self, region: str, hours: int, limit: int) -> Optional[NewsResponse]:
        """Stale response from any cached entry, or None when nothing is cached."""
        entry: Optional[CacheEntry] = await self.cache.get_fallback(region)
        if entry is None:
            return None

        now = datetime.now(tz=timezone.utc)
        window = filter_by_time_window(filter_by_region(entry.posts, region), hours, now=now)
        baselines = await self.baselines.get_baselines(now)
        logger.warning("Serving stale cache for %s (%.0fs old)", region, entry.age_seconds(now))
        return NewsResponse(
            items=window[:limit],
            activity=compute_region_activity(window, baselines),
            fetched_at=now,
            total_items=len(window),
            sources_count=len(self.registry.sources_for_region(region)),
            hours_window=hours,
            from_cache=True,
            partial=True,
            stale=True,
            error=PARTIAL_DATA_ERROR,
        )

    def warm(self) -> bool:
        """Kick off a background refresh of "all"; False if one is already running."""
        return self.cache.refresh_in_background(Region.ALL.value)


# ─── Dependency ────────────────────────────────────────────────────────────────

_service: Optional[NewsService] = None


def build_news_service() -> NewsService:
    registry = SourceRegistry.from_file(settings.sources_path, platforms=settings.feed_platforms)
    return NewsService(
        registry=registry,
        scheduler=BatchScheduler(build_fetchers()),
        baselines=BaselineProvider(
            sources=lambda: registry.all_sources,
            db_provider=get_db,
            refresh_seconds=settings.baseline_refresh_seconds,
            time_of_day=settings.activity_time_of_day,
        ),
        priority_store=PriorityPostStore(get_db),
        activity_logger=ActivityLogger(get_db),
        durable=MongoCacheStore(get_db),
        activity_window_hours=settings.activity_window_hours,
        ttl_seconds=settings.l1_ttl_seconds,
        stale_seconds=settings.l1_stale_seconds,
        l2_fresh_seconds=settings.l2_fresh_seconds,
        l2_key=settings.l2_cache_key,
    )


def get_news_service() -> NewsService:
    """FastAPI dependency — the process-wide NewsService, built on first use."""
    global _service
    if _service is None:
        _service = build_news_service()
    return _service


async def shutdown_news_service() -> None:
    """Let background refreshes and L2 writes finish before the DB closes."""
    if _service is not None:
        await _service.cache.drain()
