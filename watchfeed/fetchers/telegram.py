"""
TelegramFetcher — public channel posts via the t.me/s/ web preview.

The static preview page (https://t.me/s/<channel>) renders the latest
messages as HTML without JavaScript or an API session. Each message block
carries:
  data-post="Channel/12345"                   → guid + permalink
  <div class="tgme_widget_message_text ...">  → body
  <time datetime="2026-01-01T00:00:00+00:00"> → timestamp

Channels that are private or do not exist still return 200 with a landing
page; those handles are cached as invalid for an hour. Telegram throttles
aggressively, which is why its batch policy is the tightest (5 / 300 ms).
"""

import logging
import re

import httpx

from watchfeed.fetchers.base import BROWSER_USER_AGENT, PlatformFetcher, parse_timestamp, strip_html
from watchfeed.models.post import Platform, Post, Source

logger = logging.getLogger(__name__)

TELEGRAM_PREVIEW_URL = "https://t.me/s/{handle}"

_HANDLE_RE = re.compile(r"t\.me/(?:s/)?([^/?]+)")
_MESSAGE_RE = re.compile(
    r'data-post="([^"]+)"[\s\S]*?'
    r'<div class="tgme_widget_message_text[^"]*"[^>]*>([\s\S]*?)</div>[\s\S]*?'
    r'datetime="([^"]+)"'
)
_MISSING_MARKERS = ("tgme_page_context_bot", "If you have <strong>Telegram</strong>")


def extract_handle(locator: str) -> str | None:
    """Accept 'https://t.me/s/Channel', 't.me/Channel', '@Channel' or 'Channel'."""
    match = _HANDLE_RE.search(locator)
    if match:
        return match.group(1)
    handle = locator.strip().lstrip("@")
    return handle or None


def parse_preview_html(html: str) -> list[tuple[str, str, str]]:
    """Return (data-post id, plain text, datetime string) for every non-empty message."""
    messages = []
    for post_id, raw_text, when in _MESSAGE_RE.findall(html):
        text = strip_html(raw_text)
        if text:
            messages.append((post_id, text, when))
    return messages


class TelegramFetcher(PlatformFetcher):
    platform = Platform.TELEGRAM.value

    async def fetch(self, source: Source, client: httpx.AsyncClient) -> list[Post]:
        handle = extract_handle(source.handle)
        if not handle:
            raise self._error(source, f"invalid channel locator {source.handle!r}")
        if self.backoff.should_skip(handle):
            return []

        try:
            response = await client.get(
                TELEGRAM_PREVIEW_URL.format(handle=handle),
                headers={
                    "User-Agent": BROWSER_USER_AGENT,
                    "Accept": "text/html,application/xhtml+xml",
                    "Accept-Language": "en-US,en;q=0.9",
                },
                timeout=self.timeout,
                follow_redirects=True,
            )
        except httpx.TimeoutException:
            raise self._timeout(source, handle)
        except httpx.HTTPError as exc:
            raise self._error(source, f"request failed: {exc}")

        if response.status_code == 404:
            self.backoff.mark_invalid(handle, "NotFound")
            logger.warning("[Telegram] Channel @%s not found. Cached for 1 hour.", handle)
            raise self._error(source, "HTTP 404")
        if response.status_code >= 400:
            raise self._error(source, f"HTTP {response.status_code}")

        html = response.text
        if any(marker in html for marker in _MISSING_MARKERS):
            self.backoff.mark_invalid(handle, "PrivateOrNotFound")
            logger.warning("[Telegram] Channel @%s is private or doesn't exist. Cached for 1 hour.", handle)
            raise self._error(source, "private or missing channel")

        posts = []
        for post_id, text, when in parse_preview_html(html):
            message_num = post_id.rsplit("/", 1)[-1]
            posts.append(self._build_post(
                source,
                guid=f"telegram-{post_id}",
                text=text,
                timestamp=parse_timestamp(when),
                url=f"https://t.me/{handle}/{message_num}",
            ))
        return posts
