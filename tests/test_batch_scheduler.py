"""
test_batch_scheduler.py — Batching, failure isolation and idempotence of one
fetch cycle. Fetchers here are in-process fakes; the shared httpx client is
backed by a MockTransport that must never be hit.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from watchfeed.core.errors import AggregationFailure, SourceFetchError
from watchfeed.fetchers.base import PlatformFetcher
from watchfeed.fetchers.registry import BatchPolicy
from watchfeed.models.post import Post, Source
from watchfeed.services.batch_scheduler import BatchScheduler, FetchReport, FetchResult
from watchfeed.services.dedup import dedupe_and_sort

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def _unreachable(request):
    raise AssertionError(f"unexpected network call to {request.url}")


def _client_factory():
    return httpx.AsyncClient(transport=httpx.MockTransport(_unreachable))


def _source(i: int, platform: str = "bluesky") -> Source:
    return Source(id=f"{platform}-{i}", platform=platform, handle=f"h{i}", region="us")


class FakeFetcher(PlatformFetcher):
    """Returns two posts per source; sources listed in `failing` raise."""

    def __init__(self, platform: str, failing=(), shared_post=False):
        super().__init__()
        self.platform = platform
        self.failing = set(failing)
        self.shared_post = shared_post
        self.calls: list[str] = []
        self.active = 0
        self.peak = 0

    async def fetch(self, source, client):
        self.calls.append(source.id)
        self.active += 1
        self.peak = max(self.peak, self.active)
        await asyncio.sleep(0)
        self.active -= 1
        if source.id in self.failing:
            raise SourceFetchError(source.id, self.platform, "HTTP 500")
        posts = [
            Post(id=f"{source.id}-a", title="a", body="a", source_id=source.id, region="us",
                 timestamp=T0 - timedelta(minutes=len(source.id)), platform=self.platform),
            Post(id=f"{source.id}-b", title="b", body="b", source_id=source.id, region="us",
                 timestamp=T0, platform=self.platform),
        ]
        if self.shared_post:
            posts.append(Post(id="dup", title="dup", body="dup", source_id=source.id, region="us",
                              timestamp=T0, platform=self.platform))
        return posts


class RecordingSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class TestFetchReport:
    def test_counts_per_platform(self):
        report = FetchReport()
        report.record(FetchResult(source=_source(1)))
        report.record(FetchResult(source=_source(2), error=SourceFetchError("b-2", "bluesky", "x")))
        report.record(FetchResult(source=_source(3, "telegram")))
        assert (report.attempted, report.succeeded, report.failed) == (3, 2, 1)
        assert report.platforms["bluesky"].failed == 1
        assert not report.all_failed

    def test_all_failed_raises_aggregation_failure(self):
        report = FetchReport()
        report.record(FetchResult(source=_source(1), error=SourceFetchError("b-1", "bluesky", "x")))
        with pytest.raises(AggregationFailure):
            report.raise_if_all_failed()

    def test_empty_cycle_is_not_a_failure(self):
        FetchReport().raise_if_all_failed()


class TestBatchScheduler:
    async def test_batches_and_delays_between_batches_only(self):
        fetcher = FakeFetcher("bluesky")
        sleep = RecordingSleep()
        scheduler = BatchScheduler(
            {"bluesky": fetcher},
            client_factory=_client_factory,
            policies={"bluesky": BatchPolicy(batch_size=2, delay_seconds=0.25)},
            sleep=sleep,
        )
        posts, report = await scheduler.fetch_all([_source(i) for i in range(5)])

        assert sleep.delays == [0.25, 0.25]  # 3 batches → 2 gaps
        assert fetcher.peak <= 2
        assert report.attempted == 5
        assert len(posts) == 10

    async def test_single_batch_never_sleeps(self):
        sleep = RecordingSleep()
        scheduler = BatchScheduler({"bluesky": FakeFetcher("bluesky")}, client_factory=_client_factory, sleep=sleep)
        await scheduler.fetch_all([_source(i) for i in range(3)])
        assert sleep.delays == []

    async def test_failure_is_isolated(self):
        fetcher = FakeFetcher("bluesky", failing={"bluesky-1"})
        scheduler = BatchScheduler({"bluesky": fetcher}, client_factory=_client_factory, sleep=RecordingSleep())
        posts, report = await scheduler.fetch_all([_source(i) for i in range(3)])

        assert fetcher.calls == ["bluesky-0", "bluesky-1", "bluesky-2"]
        assert {p.source_id for p in posts} == {"bluesky-0", "bluesky-2"}
        assert (report.succeeded, report.failed) == (2, 1)

    async def test_unexpected_exception_is_isolated(self):
        class Exploding(FakeFetcher):
            async def fetch(self, source, client):
                raise RuntimeError("bug")

        scheduler = BatchScheduler(
            {"bluesky": FakeFetcher("bluesky"), "telegram": Exploding("telegram")},
            client_factory=_client_factory,
            sleep=RecordingSleep(),
        )
        posts, report = await scheduler.fetch_all([_source(1), _source(2, "telegram")])
        assert len(posts) == 2
        assert report.platforms["telegram"].failed == 1

    async def test_unknown_platform_counts_as_failure(self):
        scheduler = BatchScheduler({}, client_factory=_client_factory, sleep=RecordingSleep())
        posts, report = await scheduler.fetch_all([_source(1, "rss")])
        assert posts == []
        assert report.all_failed

    async def test_platforms_run_concurrently(self):
        started = asyncio.Event()
        release = asyncio.Event()

        class Blocking(FakeFetcher):
            async def fetch(self, source, client):
                started.set()
                await release.wait()
                return []

        class Releasing(FakeFetcher):
            async def fetch(self, source, client):
                await started.wait()
                release.set()
                return []

        scheduler = BatchScheduler(
            {"bluesky": Blocking("bluesky"), "telegram": Releasing("telegram")},
            client_factory=_client_factory,
            sleep=RecordingSleep(),
        )
        # Deadlocks if the partitions were fetched one after the other.
        await asyncio.wait_for(scheduler.fetch_all([_source(1), _source(2, "telegram")]), timeout=2)

    async def test_output_follows_registry_order(self):
        scheduler = BatchScheduler(
            {"bluesky": FakeFetcher("bluesky"), "telegram": FakeFetcher("telegram")},
            client_factory=_client_factory,
            sleep=RecordingSleep(),
        )
        sources = [_source(1, "telegram"), _source(2), _source(3, "telegram")]
        posts, _ = await scheduler.fetch_all(sources)
        assert [p.source_id for p in posts[::2]] == ["telegram-1", "bluesky-2", "telegram-3"]

    async def test_idempotent_against_stable_responses(self):
        scheduler = BatchScheduler(
            {"bluesky": FakeFetcher("bluesky", shared_post=True)},
            client_factory=_client_factory,
            sleep=RecordingSleep(),
        )
        sources = [_source(i) for i in range(4)]
        first, _ = await scheduler.fetch_all(sources)
        second, _ = await scheduler.fetch_all(sources)

        a, b = dedupe_and_sort(first), dedupe_and_sort(second)
        assert [p.id for p in a] == [p.id for p in b]
        assert sum(1 for p in a if p.id == "dup") == 1

    async def test_cycle_of_malformed_bodies_is_an_aggregation_failure(self):
        from watchfeed.fetchers.bluesky import BlueskyFetcher

        def error_body(request):
            return httpx.Response(200, json={"error": "InternalError"})

        scheduler = BatchScheduler(
            {"bluesky": BlueskyFetcher()},
            client_factory=lambda: httpx.AsyncClient(transport=httpx.MockTransport(error_body)),
            sleep=RecordingSleep(),
        )
        posts, report = await scheduler.fetch_all([_source(1), _source(2)])
        assert posts == []
        assert (report.succeeded, report.failed) == (0, 2)
        with pytest.raises(AggregationFailure):
            report.raise_if_all_failed()
