"""
cache.py — Two-tier news cache with single-flight and stale-while-revalidate.

TIERS
─────
  L1  MemoryCache       process-local; fresh < l1_ttl (5 min), servable as
                        stale < l1_stale (15 min); entries are never evicted,
                        only replaced, so any age remains available as the
                        error fallback
  L2  MongoCacheStore   durable, shared across instances; holds ONLY the
                        canonical "all" entry under l2_cache_key; fresh
                        < l2_fresh (6 min), usable for fallback at any age

LOOKUP (fetch_with_cache)
─────────────────────────
  a. region != all and "all" is fresh in L1 → filter it, store the region's own
     L1 entry, serve
  b. a load for this key is already in flight → await it (single-flight)
  c. key == all and L2 is fresh → hydrate L1, serve
  d. live fetch → dedupe + sort → L1, and for "all" a fire-and-forget L2 write

Step (a) only applies when "all" is FRESH. When "all" is stale-but-present a
region request does its own live fetch rather than deriving from old data.

SERVING (get_feed)
──────────────────
  fresh L1        → serve
  stale L1        → serve now, refresh in a background task
  nothing usable  → await fetch_with_cache
  refresh=True    → skip L1 and L2, still coalesced through single-flight

Failures of the durable tier never fail a request: CacheReadError is a miss,
CacheWriteError is logged and dropped.
"""

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Protocol

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from watchfeed.core.errors import CacheReadError, CacheWriteError
from watchfeed.models.post import CacheEntry, Post
from watchfeed.models.region import Region
from watchfeed.services.dedup import dedupe_and_sort
from watchfeed.services.feed_composer import filter_by_region
from watchfeed.services.singleflight import SingleFlight

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
Loader = Callable[[str], Awaitable[list[Post]]]


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


# ─── L1 ────────────────────────────────────────────────────────────────────────

class MemoryCache:
    """Process-local key → CacheEntry map."""

    def __init__(self, clock: Clock = utcnow) -> None:
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def set(self, key: str, posts: list[Post], fetched_at: Optional[datetime] = None) -> CacheEntry:
        entry = CacheEntry(key=key, posts=posts, fetched_at=fetched_at or self._clock())
        self._entries[key] = entry
        return entry

    def keys(self) -> list[str]:
        return list(self._entries)


# ─── L2 ────────────────────────────────────────────────────────────────────────

class DurableStore(Protocol):
    async def load(self, key: str) -> Optional[CacheEntry]:
        """Return the stored entry, None when absent. Raises CacheReadError."""

    async def save(self, entry: CacheEntry) -> None:
        """Overwrite the entry wholesale. Raises CacheWriteError."""


class MongoCacheStore:
    """
    L2 on the `news_cache` collection, one document per key:

      { "_id": "osint:all", "posts": [...], "item_count": 812, "fetched_at": ISODate }

    `db_provider` is called per operation so a database that comes up (or
    goes away) after startup is picked up; None means degraded mode.
    """

    collection_name = "news_cache"

    def __init__(self, db_provider: Callable[[], Optional[AsyncIOMotorDatabase]]) -> None:
        self._db_provider = db_provider

    async def load(self, key: str) -> Optional[CacheEntry]:
        db = self._db_provider()
        if db is None:
            return None
        try:
            doc = await db[self.collection_name].find_one({"_id": key})
        except PyMongoError as exc:
            raise CacheReadError(f"news_cache read failed for {key}: {exc}") from exc
        if doc is None:
            return None
        return CacheEntry(key=key, posts=doc.get("posts", []), fetched_at=doc["fetched_at"])

    async def save(self, entry: CacheEntry) -> None:
        db = self._db_provider()
        if db is None:
            logger.debug("No database; skipping L2 write for %s", entry.key)
            return
        doc = {
            "posts": [p.model_dump(mode="json") for p in entry.posts],
            "item_count": len(entry.posts),
            "fetched_at": entry.fetched_at,
        }
        try:
            await db[self.collection_name].replace_one({"_id": entry.key}, doc, upsert=True)
        except PyMongoError as exc:
            raise CacheWriteError(f"news_cache write failed for {entry.key}: {exc}") from exc


# ─── Service ───────────────────────────────────────────────────────────────────

class CacheService:
    """
    Owns L1, the optional L2 store, the single-flight registry and the set of
    background refresh tasks. `loader(key)` performs a live fetch for a key
    and may raise; its failures are never cached.
    """

    def __init__(
        self,
        loader: Loader,
        memory: Optional[MemoryCache] = None,
        durable: Optional[DurableStore] = None,
        *,
        ttl_seconds: float = 300,
        stale_seconds: float = 900,
        l2_fresh_seconds: float = 360,
        l2_key: str = "osint:all",
        clock: Clock = utcnow,
    ) -> None:
        self.loader = loader
        self.clock = clock
        self.memory = memory or MemoryCache(clock=clock)
        self.durable = durable
        self.ttl_seconds = ttl_seconds
        self.stale_seconds = stale_seconds
        self.l2_fresh_seconds = l2_fresh_seconds
        self.l2_key = l2_key
        self.flights = SingleFlight()
        self._background: set[asyncio.Task] = set()

    # ── L1 primitives ────────────────────────────────────────────────────────

    def get_cached(self, key: str) -> Optional[CacheEntry]:
        """L1 entry still inside the stale-while-revalidate window."""
        entry = self.memory.get(key)
        if entry is None or entry.age_seconds(self.clock()) >= self.stale_seconds:
            return None
        return entry

    def is_fresh(self, key: str) -> bool:
        entry = self.memory.get(key)
        return entry is not None and entry.age_seconds(self.clock()) < self.ttl_seconds

    def get_stale(self, key: str) -> Optional[CacheEntry]:
        """L1 entry of any age."""
        return self.memory.get(key)

    def set(self, key: str, posts: list[Post], fetched_at: Optional[datetime] = None) -> CacheEntry:
        entry = self.memory.set(key, dedupe_and_sort(posts), fetched_at=fetched_at)
        if key == Region.ALL.value and self.durable is not None:
            self.spawn(self._write_durable(entry), name="l2-write")
        return entry

    # ── Lookup ───────────────────────────────────────────────────────────────

    async def fetch_with_cache(self, key: str, force: bool = False) -> tuple[CacheEntry, bool]:
        """
        Resolve *key* through steps a–d. Returns (entry, from_cache).

        With force=True steps a and c are skipped.
        """
        if not force:
            derived = self._derive_from_all(key)
            if derived is not None:
                return derived, True
        return await self.flights.do(key, lambda: self._load(key, use_durable=not force))

    async def get_feed(self, key: str, force: bool = False) -> tuple[CacheEntry, bool]:
        if force:
            return await self.fetch_with_cache(key, force=True)

        entry = self.memory.get(key)
        if entry is not None:
            age = entry.age_seconds(self.clock())
            if age < self.ttl_seconds:
                return entry, True
            if age < self.stale_seconds:
                logger.info("Stale cache for %s (%.0fs old), refreshing in background", key, age)
                self.refresh_in_background(key)
                return entry, True

        logger.info("Cache miss for %s, fetching", key)
        return await self.fetch_with_cache(key)

    def refresh_in_background(self, key: str) -> bool:
        """Start a non-blocking refresh unless one is already running."""
        if self.flights.in_flight(key):
            return False
        self.spawn(self._refresh(key), name=f"refresh:{key}")
        return True

    async def get_fallback(self, key: str) -> Optional[CacheEntry]:
        """
        Best cached entry of ANY staleness for the error path: L1 for the
        key, then L1 "all", then L2 at any age. Region keys are filtered
        out of "all".
        """
        entry = self.memory.get(key)
        if entry is not None:
            return entry

        canonical = self.memory.get(Region.ALL.value)
        if canonical is None:
            canonical = await self._read_durable(math.inf)
        if canonical is None:
            return None
        if key == Region.ALL.value:
            return canonical
        return CacheEntry(key=key, posts=filter_by_region(canonical.posts, key), fetched_at=canonical.fetched_at)

    def info(self) -> dict:
        now = self.clock()
        return {
            "entries": {k: round(self.memory.get(k).age_seconds(now)) for k in self.memory.keys()},
            "in_flight": self.flights.keys(),
            "background_tasks": len(self._background),
        }

    async def drain(self) -> None:
        """Wait for outstanding background work (shutdown and tests)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ── Internals ────────────────────────────────────────────────────────────

    def _derive_from_all(self, key: str) -> Optional[CacheEntry]:
        if key == Region.ALL.value or not self.is_fresh(Region.ALL.value):
            return None
        canonical = self.memory.get(Region.ALL.value)
        logger.debug("Deriving %s from fresh 'all' entry", key)
        return self.memory.set(key, filter_by_region(canonical.posts, key), fetched_at=canonical.fetched_at)

    async def _load(self, key: str, use_durable: bool) -> tuple[CacheEntry, bool]:
        if use_durable and key == Region.ALL.value:
            stored = await self._read_durable(self.l2_fresh_seconds)
            if stored is not None:
                logger.info("L2 hit for %s (%.0fs old), hydrating L1", key, stored.age_seconds(self.clock()))
                entry = self.memory.set(key, stored.posts, fetched_at=stored.fetched_at)
                return entry, True

        posts = await self.loader(key)
        return self.set(key, posts), False

    async def _refresh(self, key: str) -> None:
        if self._derive_from_all(key) is not None:
            return
        await self.flights.do(key, lambda: self._load(key, use_durable=False))

    async def _read_durable(self, max_age: float) -> Optional[CacheEntry]:
        if self.durable is None:
            return None
        try:
            entry = await self.durable.load(self.l2_key)
        except CacheReadError as exc:
            logger.warning("L2 read failed, treating as miss: %s", exc)
            return None
        if entry is None or entry.age_seconds(self.clock()) >= max_age:
            return None
        return entry

    async def _write_durable(self, entry: CacheEntry) -> None:
        stored = CacheEntry(key=self.l2_key, posts=entry.posts, fetched_at=entry.fetched_at)
        try:
            await self.durable.save(stored)
        except CacheWriteError as exc:
            logger.warning("L2 write dropped: %s", exc)

    def spawn(self, coro: Awaitable, name: str) -> None:
        """Run *coro* as a tracked fire-and-forget task."""
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task %s failed: %s", task.get_name(), exc)
