"""
batch_scheduler.py — One fetch cycle across every registered source.

HOW A CYCLE RUNS
────────────────
1. Sources are partitioned by platform, preserving registry order.
2. Each partition is fetched in fixed-size batches. Sources inside a batch run
   concurrently; the platform's delay is slept between batches (never before
   the first). Batch size and delay come from fetchers.registry.BATCH_POLICIES.
3. Partitions run concurrently with each other via asyncio.gather.
4. Every source yields a FetchResult, either posts or a SourceFetchError.
   Failures are logged and discarded at the aggregation boundary. They never
   abort a batch, and there is no retry inside a cycle: the next periodic
   cycle retries naturally.

The output is the union of every successful source's posts in registry order
(not yet deduplicated or sorted) plus a FetchReport with per-platform
attempted / succeeded / failed counts.

USAGE
─────
  scheduler = BatchScheduler(build_fetchers())
  posts, report = await scheduler.fetch_all(sources)
  report.raise_if_all_failed()
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

import httpx

from watchfeed.core.errors import AggregationFailure, SourceFetchError
from watchfeed.fetchers.base import PlatformFetcher
from watchfeed.fetchers.registry import BatchPolicy, policy_for
from watchfeed.models.post import Post, Source

logger = logging.getLogger(__name__)


# ─── Results ───────────────────────────────────────────────────────────────────

@dataclass
class FetchResult:
    """Outcome of fetching one source: posts on success, error on failure."""

    source: Source
    posts: list[Post] = field(default_factory=list)
    error: Optional[SourceFetchError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class PlatformReport:
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0


@dataclass
class FetchReport:
    platforms: dict[str, PlatformReport] = field(default_factory=dict)
    duration_ms: int = 0

    @property
    def attempted(self) -> int:
        return sum(p.attempted for p in self.platforms.values())

    @property
    def succeeded(self) -> int:
        return sum(p.succeeded for p in self.platforms.values())

    @property
    def failed(self) -> int:
        return sum(p.failed for p in self.platforms.values())

    @property
    def all_failed(self) -> bool:
        return self.attempted > 0 and self.succeeded == 0

    def record(self, result: FetchResult) -> None:
        stats = self.platforms.setdefault(result.source.platform, PlatformReport())
        stats.attempted += 1
        if result.ok:
            stats.succeeded += 1
        else:
            stats.failed += 1

    def raise_if_all_failed(self) -> None:
        if self.all_failed:
            raise AggregationFailure(self.failed, self.attempted)


# ─── Scheduler ─────────────────────────────────────────────────────────────────

def _default_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(follow_redirects=True)


class BatchScheduler:
    """
    Fans a source list out to the platform fetchers.

    `client_factory` builds the httpx.AsyncClient shared by one cycle; tests
    pass a factory backed by httpx.MockTransport. `sleep` is injectable so
    batch delays can be observed without waiting.
    """

    def __init__(
        self,
        fetchers: dict[str, PlatformFetcher],
        client_factory: Callable[[], httpx.AsyncClient] = _default_client,
        policies: Optional[dict[str, BatchPolicy]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.fetchers = fetchers
        self.client_factory = client_factory
        self.policies = policies or {}
        self._sleep = sleep

    def policy(self, platform: str) -> BatchPolicy:
        return self.policies.get(platform) or policy_for(platform)

    async def fetch_all(self, sources: list[Source]) -> tuple[list[Post], FetchReport]:
        started = time.perf_counter()
        partitions: dict[str, list[tuple[int, Source]]] = {}
        for index, source in enumerate(sources):
            partitions.setdefault(source.platform, []).append((index, source))

        async with self.client_factory() as client:
            partition_results = await asyncio.gather(*(
                self._fetch_partition(platform, members, client)
                for platform, members in partitions.items()
            ))

        indexed = sorted(
            (item for results in partition_results for item in results),
            key=lambda item: item[0],
        )

        report = FetchReport()
        posts: list[Post] = []
        for _, result in indexed:
            report.record(result)
            if result.ok:
                posts.extend(result.posts)
        report.duration_ms = int((time.perf_counter() - started) * 1000)

        if report.failed:
            logger.warning(
                "Fetch cycle: %d/%d sources failed (%s)",
                report.failed,
                report.attempted,
                ", ".join(f"{p}: {s.failed}/{s.attempted}" for p, s in report.platforms.items()),
            )
        logger.info("Fetch cycle: %d posts from %d sources in %d ms",
                    len(posts), report.succeeded, report.duration_ms)
        return posts, report

    async def _fetch_partition(
        self,
        platform: str,
        members: list[tuple[int, Source]],
        client: httpx.AsyncClient,
    ) -> list[tuple[int, FetchResult]]:
        policy = self.policy(platform)
        results: list[tuple[int, FetchResult]] = []
        for start in range(0, len(members), policy.batch_size):
            if start > 0 and policy.delay_seconds > 0:
                await self._sleep(policy.delay_seconds)
            batch = members[start:start + policy.batch_size]
            batch_results = await asyncio.gather(*(
                self._fetch_one(source, client) for _, source in batch
            ))
            results.extend(zip((index for index, _ in batch), batch_results))
        return results

    async def _fetch_one(self, source: Source, client: httpx.AsyncClient) -> FetchResult:
        fetcher = self.fetchers.get(source.platform)
        if fetcher is None:
            error = SourceFetchError(source.id, source.platform, "no fetcher registered for platform")
            logger.warning("Skipping %s: %s", source.id, error.reason)
            return FetchResult(source=source, error=error)

        try:
            posts = await fetcher.fetch(source, client)
        except SourceFetchError as exc:
            logger.warning("[%s] %s failed: %s", source.platform, source.display_name, exc.reason)
            return FetchResult(source=source, error=exc)
        except Exception as exc:
            logger.exception("[%s] %s raised unexpectedly", source.platform, source.display_name)
            return FetchResult(
                source=source,
                error=SourceFetchError(source.id, source.platform, f"unexpected error: {exc}"),
            )
        return FetchResult(source=source, posts=posts)
