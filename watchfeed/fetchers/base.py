"""
Base fetcher interface for platform clients.

Every platform (Bluesky, Telegram, Mastodon) implements PlatformFetcher so the
BatchScheduler can treat all of them uniformly:

  1. Given a Source and a shared httpx.AsyncClient, fetch the source's
     recent posts.
  2. Normalize platform payloads into Post objects.
  3. Raise SourceFetchError on timeouts, HTTP errors and malformed payloads.
     The scheduler isolates that failure; a fetcher never has to swallow it.
  4. Return [] (a success) for handles the back-off cache says to skip.

Platform-specific failure modes (dead handles, repeated timeouts) are tracked
per fetcher instance in a HandleBackoff so one bad account does not cost a
timeout on every cycle.
"""

import hashlib
import logging
import re
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from html import unescape
from typing import Optional

import httpx

from watchfeed.core.errors import SourceFetchError
from watchfeed.models.post import Post, Source
from watchfeed.services.region_classifier import classify_region

logger = logging.getLogger(__name__)

INVALID_HANDLE_TTL = 60 * 60        # 1 hour
TIMEOUT_WINDOW = 30 * 60            # 30 minutes
TIMEOUT_THRESHOLD = 2               # skip after this many timeouts in the window

BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

_BR_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_PARA_RE = re.compile(r"</p>\s*<p>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")


def make_post_id(source_id: str, guid: str) -> str:
    """Stable, platform-scoped dedup key for a post."""
    digest = hashlib.sha256(guid.encode("utf-8")).hexdigest()[:16]
    return f"{source_id}-{digest}"


def strip_html(html: str) -> str:
    """Convert a small HTML fragment (status text, message body) to plain text."""
    text = _BR_RE.sub("\n", html)
    text = _PARA_RE.sub("\n\n", text)
    text = _TAG_RE.sub("", text)
    return unescape(text).replace("\xa0", " ").strip()


def parse_timestamp(value: Optional[str]) -> datetime:
    """Parse an ISO-8601 timestamp; unparseable or missing values become now()."""
    if value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed
        except ValueError:
            logger.debug("Unparseable timestamp %r, using now()", value)
    return datetime.now(tz=timezone.utc)


class HandleBackoff:
    """
    Remembers handles that are known-bad (1 h) or repeatedly timing out (30 min).

    Process-local and per fetcher; a restart forgets everything, which is fine.
    """

    def __init__(self, clock=time.monotonic) -> None:
        self._clock = clock
        self._invalid: dict[str, tuple[str, float]] = {}
        self._timeouts: dict[str, tuple[int, float]] = {}

    def mark_invalid(self, handle: str, reason: str) -> None:
        self._invalid[handle] = (reason, self._clock())

    def is_invalid(self, handle: str) -> bool:
        cached = self._invalid.get(handle)
        if cached is None:
            return False
        if self._clock() - cached[1] > INVALID_HANDLE_TTL:
            del self._invalid[handle]
            return False
        return True

    def record_timeout(self, handle: str) -> int:
        now = self._clock()
        existing = self._timeouts.get(handle)
        if existing and now - existing[1] < TIMEOUT_WINDOW:
            count = existing[0] + 1
        else:
            count = 1
        self._timeouts[handle] = (count, now)
        return count

    def is_timed_out(self, handle: str) -> bool:
        cached = self._timeouts.get(handle)
        if cached is None:
            return False
        if self._clock() - cached[1] > TIMEOUT_WINDOW:
            del self._timeouts[handle]
            return False
        return cached[0] >= TIMEOUT_THRESHOLD

    def should_skip(self, handle: str) -> bool:
        return self.is_invalid(handle) or self.is_timed_out(handle)


class PlatformFetcher(ABC):
    """
    Abstract base class for platform clients.

    Attributes:
        platform: Platform identifier matching Source.platform
        timeout:  Per-request timeout in seconds
    """

    platform: str

    def __init__(self, timeout: float = 8.0) -> None:
        self.timeout = timeout
        self.backoff = HandleBackoff()

    @abstractmethod
    async def fetch(self, source: Source, client: httpx.AsyncClient) -> list[Post]:
        """
        Fetch recent posts for *source*.

        Returns:
            Normalized posts (possibly empty).

        Raises:
            SourceFetchError: timeout, HTTP error or malformed payload.
        """

    def _error(self, source: Source, reason: str) -> SourceFetchError:
        return SourceFetchError(source.id, self.platform, reason)

    def _timeout(self, source: Source, handle: str) -> SourceFetchError:
        count = self.backoff.record_timeout(handle)
        if count >= TIMEOUT_THRESHOLD:
            return self._error(source, f"timeout #{count}, skipping for 30 min")
        return self._error(source, f"request timeout ({self.timeout:g}s)")

    def _build_post(
        self,
        source: Source,
        guid: str,
        text: str,
        timestamp: datetime,
        url: Optional[str],
        title_length: int = 500,
    ) -> Post:
        return Post(
            id=make_post_id(source.id, guid),
            title=text[:title_length],
            body=text,
            source_id=source.id,
            source_name=source.display_name,
            region=classify_region(text, source.region),
            timestamp=timestamp,
            platform=self.platform,
            url=url,
        )
