"""
Platform → fetcher wiring and per-platform batch policy.

Batch sizes and delays are rate-limit tuning, measured per platform:

  platform   batch  delay   why
  ────────   ─────  ─────   ───────────────────────────────────────────────
  bluesky    30     100 ms  public AppView tolerates wide fan-out
  telegram   5      300 ms  t.me preview pages throttle hard on bursts
  mastodon   20     100 ms  requests spread over many independent instances

The delay is applied only BETWEEN batches of the same platform, never before
the first one. Platforms are independent of each other and run concurrently.
"""

from dataclasses import dataclass

from watchfeed.core.config import settings
from watchfeed.fetchers.base import PlatformFetcher
from watchfeed.fetchers.bluesky import BlueskyFetcher
from watchfeed.fetchers.mastodon import MastodonFetcher
from watchfeed.fetchers.telegram import TelegramFetcher
from watchfeed.models.post import Platform


@dataclass(frozen=True)
class BatchPolicy:
    batch_size: int
    delay_seconds: float


BATCH_POLICIES: dict[str, BatchPolicy] = {
    Platform.BLUESKY.value: BatchPolicy(batch_size=30, delay_seconds=0.1),
    Platform.TELEGRAM.value: BatchPolicy(batch_size=5, delay_seconds=0.3),
    Platform.MASTODON.value: BatchPolicy(batch_size=20, delay_seconds=0.1),
}

# Unknown platforms get the most conservative policy.
DEFAULT_POLICY = BATCH_POLICIES[Platform.TELEGRAM.value]


def policy_for(platform: str) -> BatchPolicy:
    return BATCH_POLICIES.get(platform, DEFAULT_POLICY)


def build_fetchers() -> dict[str, PlatformFetcher]:
    """One fetcher instance per platform; instances own their back-off state."""
    fetchers: list[PlatformFetcher] = [
        BlueskyFetcher(timeout=settings.bluesky_timeout_seconds),
        TelegramFetcher(timeout=settings.fetch_timeout_seconds),
        MastodonFetcher(timeout=settings.fetch_timeout_seconds),
    ]
    return {f.platform: f for f in fetchers}
