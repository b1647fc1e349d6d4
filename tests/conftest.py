"""
pytest configuration and shared fixtures for the Watchfeed tests.

Key concern: tests must not require a live MongoDB or reach any platform.
We achieve this by:
  1. Patching connect_to_mongo / close_mongo_connection to no-ops so
     FastAPI's lifespan doesn't try to reach a real database.
  2. Setting db_client.client = None (disconnected) so health check
     correctly reports "disconnected" — a valid test-mode state.
  3. Overriding get_news_service with a NewsService wired to a FakeScheduler,
     so no HTTP request ever leaves the process.

Platform fetchers are tested separately against httpx.MockTransport.
"""

import asyncio
import os
from datetime import datetime, timedelta, timezone
from typing import Optional
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

# Set env vars BEFORE importing the app so Settings picks them up correctly
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("ACTIVITY_TIME_OF_DAY", "false")
os.environ.setdefault("WARMUP_INTERVAL_SECONDS", "0")

from watchfeed.core.errors import SourceFetchError  # noqa: E402
from watchfeed.models.post import Post, PriorityPost, Source  # noqa: E402
from watchfeed.services.activity import BaselineProvider  # noqa: E402
from watchfeed.services.batch_scheduler import FetchReport, FetchResult  # noqa: E402
from watchfeed.services.news_service import NewsService  # noqa: E402
from watchfeed.services.source_registry import SourceRegistry  # noqa: E402

NOW = datetime.now(tz=timezone.utc)


# ── Fakes ─────────────────────────────────────────────────────────────────────

class FakeScheduler:
    """
    Stand-in for BatchScheduler.

    Returns `posts` for every call (filtered to the requested sources),
    counts calls, optionally waits on `gate` first and optionally fails
    every source.
    """

    def __init__(self, posts: Optional[list[Post]] = None, fail: bool = False) -> None:
        self.posts = posts or []
        self.fail = fail
        self.calls = 0
        self.gate: Optional[asyncio.Event] = None

    async def fetch_all(self, sources: list[Source]) -> tuple[list[Post], FetchReport]:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()

        report = FetchReport()
        source_ids = {s.id for s in sources}
        for source in sources:
            error = SourceFetchError(source.id, source.platform, "boom") if self.fail else None
            report.record(FetchResult(source=source, error=error))
        if self.fail:
            return [], report
        return [p for p in self.posts if p.source_id in source_ids], report


class FakePriorityStore:
    def __init__(self, posts: Optional[list[PriorityPost]] = None) -> None:
        self.posts = posts or []

    async def get_active(self, region: str, now=None) -> list[PriorityPost]:
        return [p for p in self.posts if region == "all" or p.region in (region, "all")]


class FakeDurableStore:
    """In-memory L2 with switchable read/write failures."""

    def __init__(self) -> None:
        self.entries = {}
        self.saves = 0
        self.read_error: Optional[Exception] = None
        self.write_error: Optional[Exception] = None

    async def load(self, key):
        if self.read_error is not None:
            raise self.read_error
        return self.entries.get(key)

    async def save(self, entry):
        if self.write_error is not None:
            raise self.write_error
        self.saves += 1
        self.entries[entry.key] = entry


# ── Factories ─────────────────────────────────────────────────────────────────

@pytest.fixture()
def make_post():
    def _make(
        post_id: str,
        minutes_ago: float = 0,
        region: str = "us",
        source_id: str = "src-us",
        platform: str = "bluesky",
        title: Optional[str] = None,
    ) -> Post:
        return Post(
            id=post_id,
            title=title or f"post {post_id}",
            body=title or f"post {post_id}",
            source_id=source_id,
            source_name=source_id,
            region=region,
            timestamp=NOW - timedelta(minutes=minutes_ago),
            platform=platform,
            url=f"https://example.com/{post_id}",
        )

    return _make


@pytest.fixture()
def sources() -> list[Source]:
    return [
        Source(id="src-us", name="US Desk", platform="bluesky", handle="us.example", region="us", posts_per_day=24.5),
        Source(id="src-me", name="ME Desk", platform="telegram", handle="medesk", region="middle-east", posts_per_day=12),
        Source(id="src-eu", name="EU Desk", platform="mastodon", handle="@eu@example.social", region="europe-russia"),
        Source(id="src-off", name="Disabled", platform="bluesky", handle="off.example", region="us", enabled=False),
    ]


@pytest.fixture()
def registry(sources) -> SourceRegistry:
    return SourceRegistry(sources, platforms={"bluesky", "telegram", "mastodon"})


@pytest.fixture()
def build_service(registry):
    """Build a NewsService around a FakeScheduler; keyword args override parts."""

    def _build(
        scheduler: FakeScheduler,
        priority_posts: Optional[list[PriorityPost]] = None,
        durable: Optional[FakeDurableStore] = None,
        **cache_options,
    ) -> NewsService:
        return NewsService(
            registry=registry,
            scheduler=scheduler,
            baselines=BaselineProvider(sources=lambda: registry.all_sources, time_of_day=False),
            priority_store=FakePriorityStore(priority_posts),
            durable=durable,
            **cache_options,
        )

    return _build


# ── App fixtures ──────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
async def mock_db():
    """
    Patch the MongoDB lifecycle for every test.

    - connect_to_mongo → no-op AsyncMock (startup doesn't attempt real connection)
    - close_mongo_connection → no-op AsyncMock
    - db_client.client → None  (health check reports "disconnected", which is fine)
    - db_client.db → None
    """
    with (
        patch("watchfeed.main.connect_to_mongo", new_callable=AsyncMock),
        patch("watchfeed.main.close_mongo_connection", new_callable=AsyncMock),
    ):
        import watchfeed.core.database as db_module

        # Save originals so we can restore after the test
        original_client = db_module.db_client.client
        original_db = db_module.db_client.db

        db_module.db_client.client = None
        db_module.db_client.db = None

        yield

        db_module.db_client.client = original_client
        db_module.db_client.db = original_db


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Keep the in-memory slowapi counters from bleeding between tests."""
    from watchfeed.core.rate_limit import limiter

    limiter.reset()
    yield


@pytest.fixture()
def app_client_for():
    """
    Factory for an HTTPX client with get_news_service overridden.

    Usage:
        async with app_client_for(service) as client:
            r = await client.get("/news")
    """
    from watchfeed.main import app
    from watchfeed.services.news_service import get_news_service

    clients = []

    def _for(service: NewsService) -> AsyncClient:
        app.dependency_overrides[get_news_service] = lambda: service
        client = AsyncClient(transport=ASGITransport(app=app), base_url="http://test")
        clients.append(client)
        return client

    yield _for
    app.dependency_overrides.clear()
