"""
BlueskyFetcher — author feeds via the public AppView API.

No authentication needed: app.bsky.feed.getAuthorFeed is public. We ask for
the 10 most recent top-level posts (filter=posts_no_replies).

Failure handling:
  400 / 404      → handle marked invalid for 1 hour (bad or deleted account)
  timeouts       → counted; two inside 30 minutes skip the handle for the window
  429 / 5xx      → transient, raised without caching
"""

import logging
from typing import Any

import httpx

from watchfeed.fetchers.base import PlatformFetcher, parse_timestamp
from watchfeed.models.post import Platform, Post, Source

logger = logging.getLogger(__name__)

BLUESKY_API_URL = "https://public.api.bsky.app/xrpc/app.bsky.feed.getAuthorFeed"


def _placeholder_text(embed: dict[str, Any] | None) -> str:
    """Text for media-only posts so the feed never renders an empty card."""
    if not embed:
        return "[No content]"
    embed_type = embed.get("$type", "")
    images = embed.get("images") or []
    if "video" in embed_type:
        return "[Video]"
    if "images" in embed_type or images:
        alt = images[0].get("alt") if images else None
        return alt or "[Image]"
    external = embed.get("external") or {}
    if external.get("title"):
        return external["title"]
    return "[Media attachment]"


class BlueskyFetcher(PlatformFetcher):
    platform = Platform.BLUESKY.value

    def __init__(self, timeout: float = 5.0, page_size: int = 10) -> None:
        super().__init__(timeout=timeout)
        self.page_size = page_size

    async def fetch(self, source: Source, client: httpx.AsyncClient) -> list[Post]:
        handle = source.handle.lstrip("@")
        if self.backoff.should_skip(handle):
            return []

        try:
            response = await client.get(
                BLUESKY_API_URL,
                params={"actor": handle, "limit": self.page_size, "filter": "posts_no_replies"},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException:
            raise self._timeout(source, handle)
        except httpx.HTTPError as exc:
            raise self._error(source, f"request failed: {exc}")

        if response.status_code in (400, 404):
            self.backoff.mark_invalid(handle, str(response.status_code))
            logger.warning("[Bluesky] %s (%s): HTTP %s. Cached for 1 hour.",
                           source.display_name, handle, response.status_code)
            raise self._error(source, f"HTTP {response.status_code}")
        if response.status_code == 429:
            raise self._error(source, "rate limited")
        if response.status_code >= 400:
            raise self._error(source, f"HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            raise self._error(source, "malformed JSON payload")

        feed = data.get("feed") if isinstance(data, dict) else None
        if not isinstance(feed, list):
            raise self._error(source, "malformed feed payload")

        posts = []
        for item in feed:
            try:
                posts.append(self._convert(source, item))
            except (KeyError, TypeError, AttributeError) as exc:
                logger.debug("[Bluesky] skipping malformed item from %s: %s", handle, exc)
        return posts

    def _convert(self, source: Source, item: dict[str, Any]) -> Post:
        post = item["post"]
        record = post["record"]
        author_handle = post["author"]["handle"]
        uri = post["uri"]
        rkey = uri.rsplit("/", 1)[-1] or post.get("cid", "")
        link = f"https://bsky.app/profile/{author_handle}/post/{rkey}"

        text = (record.get("text") or "").strip()
        if not text:
            text = _placeholder_text(post.get("embed"))

        return self._build_post(
            source,
            guid=uri,
            text=text,
            timestamp=parse_timestamp(record.get("createdAt")),
            url=link,
        )
