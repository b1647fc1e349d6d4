"""
activity.py — Regional activity anomaly detection.

Compares per-region post counts in the activity window (6 h) against the
expected count for that window and classifies each tracked region.

LEVEL (ratio floor AND absolute-count floor)
────────────────────────────────────────────
  critical   multiplier >= 5.0  and count >= 50
  elevated   multiplier >= 2.5  and count >= 25
  normal     otherwise, and ALWAYS for scoring-excluded regions

The count floor keeps sparse-baseline regions from going critical off a
handful of posts.

DIRECTION (ratio only, independent of level)
────────────────────────────────────────────
  above  multiplier >= 1.5      below  multiplier <= 0.5      else normal

BASELINES
─────────
BaselineProvider prefers the `activity_baselines` collection written by the
external measurement job and falls back to a baseline derived from the source
registry's posts_per_day values. Either way the flat 6 h figure is scaled by
a UTC time-of-day multiplier (the four slots sum to 4.0, so the daily total
is unchanged).

Rounding is round-half-up (floor(x + 0.5)), including for negative values,
so percentChange of -2.5 rounds to -2.
"""

import logging
import math
import time
from collections import Counter
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo.errors import PyMongoError

from watchfeed.models.activity import ActivityLevel, Direction, RegionActivity, SourceActivityProfile
from watchfeed.models.post import Post, Source
from watchfeed.models.region import SCORING_EXCLUDED_REGIONS, TRACKED_REGIONS

logger = logging.getLogger(__name__)

# ─── Thresholds ────────────────────────────────────────────────────────────────
CRITICAL_MULTIPLIER = 5.0
CRITICAL_MIN_COUNT = 50
ELEVATED_MULTIPLIER = 2.5
ELEVATED_MIN_COUNT = 25
ABOVE_MULTIPLIER = 1.5
BELOW_MULTIPLIER = 0.5

DEFAULT_REGION_BASELINE = 30        # per 6 h, when a region has no data at all
CONSERVATIVE_POSTS_PER_DAY = 3      # stands in for guessed (round) ppd values
WINDOWS_PER_DAY = 4                 # 24 h / 6 h

TIME_OF_DAY_MULTIPLIERS = (
    0.4,  # 00–06 UTC  US night, EU night
    0.8,  # 06–12 UTC  EU morning
    1.5,  # 12–18 UTC  US morning + EU afternoon
    1.3,  # 18–24 UTC  US afternoon
)

SOURCE_ANOMALY_RATIO = 2.5
SOURCE_ANOMALY_MIN_COUNT = 3


# ─── Rounding ──────────────────────────────────────────────────────────────────

def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def round_one_decimal(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10


# ─── Region scoring ────────────────────────────────────────────────────────────

def classify_level(multiplier: float, count: int) -> ActivityLevel:
    if multiplier >= CRITICAL_MULTIPLIER and count >= CRITICAL_MIN_COUNT:
        return ActivityLevel.CRITICAL
    if multiplier >= ELEVATED_MULTIPLIER and count >= ELEVATED_MIN_COUNT:
        return ActivityLevel.ELEVATED
    return ActivityLevel.NORMAL


def classify_direction(multiplier: float) -> Direction:
    if multiplier >= ABOVE_MULTIPLIER:
        return Direction.ABOVE
    if multiplier <= BELOW_MULTIPLIER:
        return Direction.BELOW
    return Direction.NORMAL


def score_region(
    region: str,
    count: int,
    baseline: int,
    excluded: Iterable[str] = SCORING_EXCLUDED_REGIONS,
) -> RegionActivity:
    if baseline > 0:
        multiplier = round_one_decimal(count / baseline)
        percent_change = round_half_up((count - baseline) / baseline * 100)
    else:
        multiplier = 0.0
        percent_change = 0

    if region in excluded:
        level = ActivityLevel.NORMAL
    else:
        level = classify_level(multiplier, count)

    return RegionActivity(
        region=region,
        level=level,
        count=count,
        baseline=baseline,
        multiplier=multiplier,
        direction=classify_direction(multiplier),
        percent_change=percent_change,
    )


def compute_region_activity(
    window_posts: Iterable[Post],
    baselines: dict[str, int],
    tracked: Iterable[str] = TRACKED_REGIONS,
    excluded: Iterable[str] = SCORING_EXCLUDED_REGIONS,
) -> dict[str, RegionActivity]:
    """
    Score every tracked region against *baselines* in one pass over the posts.

    Every tracked region is present in the result, even with zero posts.
    """
    counts = Counter(p.region for p in window_posts)
    excluded = frozenset(excluded)
    return {
        region: score_region(region, counts.get(region, 0), baselines.get(region, DEFAULT_REGION_BASELINE), excluded)
        for region in tracked
    }


# ─── Baselines ─────────────────────────────────────────────────────────────────

def is_measured(source: Source) -> bool:
    """Non-integer ppd values (37.9) were measured; round ones (50) were guessed."""
    return source.baseline_measured or source.posts_per_day != math.floor(source.posts_per_day)


def derive_baselines(sources: Iterable[Source]) -> dict[str, int]:
    """Flat 6 h baseline per region from the registry's posting rates."""
    totals: dict[str, float] = {region: 0.0 for region in TRACKED_REGIONS}
    for source in sources:
        ppd = source.posts_per_day if is_measured(source) else CONSERVATIVE_POSTS_PER_DAY
        totals[source.region] = totals.get(source.region, 0.0) + ppd

    baselines = {}
    for region, total in totals.items():
        baseline = round_half_up(total / WINDOWS_PER_DAY)
        baselines[region] = baseline or DEFAULT_REGION_BASELINE
    return baselines


def time_of_day_multiplier(now: Optional[datetime] = None) -> float:
    hour = (now or datetime.now(tz=timezone.utc)).astimezone(timezone.utc).hour
    return TIME_OF_DAY_MULTIPLIERS[hour // 6]


def adjust_for_time_of_day(baselines: dict[str, int], multiplier: float) -> dict[str, int]:
    return {
        region: max(1, round_half_up(raw * multiplier)) if raw > 0 else 0
        for region, raw in baselines.items()
    }


class BaselineProvider:
    """
    Serves region → expected posts per 6 h window.

    The `activity_baselines` collection ({region, expected_per_window}) is
    re-read at most every `refresh_seconds`. When it is empty, unreachable
    or missing a region, the registry-derived value fills the gap.
    """

    collection_name = "activity_baselines"

    def __init__(
        self,
        sources: Callable[[], list[Source]],
        db_provider: Callable[[], Optional[AsyncIOMotorDatabase]] = lambda: None,
        refresh_seconds: float = 600,
        time_of_day: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sources = sources
        self._db_provider = db_provider
        self.refresh_seconds = refresh_seconds
        self.time_of_day = time_of_day
        self._clock = clock
        self._stored: dict[str, int] = {}
        self._loaded_at: Optional[float] = None
        self._derived: Optional[dict[str, int]] = None

    def derived(self) -> dict[str, int]:
        if self._derived is None:
            self._derived = derive_baselines(self._sources())
        return self._derived

    async def get_baselines(self, now: Optional[datetime] = None) -> dict[str, int]:
        await self._maybe_reload()
        flat = {**self.derived(), **self._stored}
        if not self.time_of_day:
            return flat
        return adjust_for_time_of_day(flat, time_of_day_multiplier(now))

    async def _maybe_reload(self) -> None:
        now = self._clock()
        if self._loaded_at is not None and now - self._loaded_at < self.refresh_seconds:
            return
        self._loaded_at = now

        db = self._db_provider()
        if db is None:
            return
        try:
            docs = await db[self.collection_name].find({}, {"_id": 0}).to_list(length=100)
        except PyMongoError as exc:
            logger.warning("Could not load activity baselines, using derived values: %s", exc)
            return

        stored = {}
        for doc in docs:
            try:
                stored[str(doc["region"])] = int(doc["expected_per_window"])
            except (KeyError, TypeError, ValueError):
                logger.debug("Ignoring malformed baseline document: %r", doc)
        self._stored = stored
        logger.info("Loaded %d measured activity baselines", len(stored))


# ─── Per-source surge detection ────────────────────────────────────────────────

def compute_source_activity(
    window_posts: Iterable[Post],
    sources_by_id: dict[str, Source],
    window_hours: int = 6,
) -> dict[str, SourceActivityProfile]:
    """Profile every source that has at least one post in the window."""
    counts = Counter(p.source_id for p in window_posts)
    profiles = {}
    for source_id, count in counts.items():
        source = sources_by_id.get(source_id)
        ppd = source.posts_per_day if source and source.posts_per_day else CONSERVATIVE_POSTS_PER_DAY
        expected = ppd / (24 / window_hours)
        ratio = round_one_decimal(count / expected) if expected > 0 else 0.0
        profiles[source_id] = SourceActivityProfile(
            source_id=source_id,
            baseline_posts_per_day=ppd,
            recent_posts=count,
            recent_window_hours=window_hours,
            anomaly_ratio=ratio,
            is_anomalous=ratio >= SOURCE_ANOMALY_RATIO and count >= SOURCE_ANOMALY_MIN_COUNT,
        )
    return profiles
