"""
MastodonFetcher — federated accounts via the instance's public REST API.

Two calls per source:
  GET https://<instance>/api/v1/accounts/lookup?acct=<handle>
  GET https://<instance>/api/v1/accounts/<id>/statuses?limit=20&exclude_replies=true

Only public/unlisted statuses are kept. Boosts are unwrapped so the boosted
content is what lands in the feed; the guid stays the boost's own status id.
"""

import logging
import re
from typing import Any

import httpx

from watchfeed.fetchers.base import PlatformFetcher, parse_timestamp, strip_html
from watchfeed.models.post import Platform, Post, Source

logger = logging.getLogger(__name__)

_URL_FORM = re.compile(r"https?://([^/]+)/@([^/?]+)")
_ACCT_FORM = re.compile(r"^@?([^@\s]+)@([^/\s]+)$")
_VISIBLE = {"public", "unlisted"}


def extract_account(locator: str) -> tuple[str, str] | None:
    """Return (handle, instance) from 'https://inst/@user' or '@user@inst'."""
    match = _URL_FORM.search(locator)
    if match:
        return match.group(2), match.group(1)
    match = _ACCT_FORM.match(locator.strip())
    if match:
        return match.group(1), match.group(2)
    return None


class MastodonFetcher(PlatformFetcher):
    platform = Platform.MASTODON.value

    def __init__(self, timeout: float = 8.0, page_size: int = 20) -> None:
        super().__init__(timeout=timeout)
        self.page_size = page_size

    async def fetch(self, source: Source, client: httpx.AsyncClient) -> list[Post]:
        account = extract_account(source.handle)
        if account is None:
            raise self._error(source, f"invalid account locator {source.handle!r}")
        handle, instance = account
        key = f"{handle}@{instance}"
        if self.backoff.should_skip(key):
            return []

        try:
            lookup = await client.get(
                f"https://{instance}/api/v1/accounts/lookup",
                params={"acct": handle},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
            if lookup.status_code == 404:
                self.backoff.mark_invalid(key, "NotFound")
                logger.warning("[Mastodon] Account @%s not found. Cached for 1 hour.", key)
                raise self._error(source, "account not found")
            if lookup.status_code >= 400:
                raise self._error(source, f"lookup HTTP {lookup.status_code}")
            account_id = self._json(source, lookup, "account")["id"]

            statuses = await client.get(
                f"https://{instance}/api/v1/accounts/{account_id}/statuses",
                params={"limit": self.page_size, "exclude_replies": "true"},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except httpx.TimeoutException:
            raise self._timeout(source, key)
        except httpx.HTTPError as exc:
            raise self._error(source, f"request failed: {exc}")
        except (KeyError, TypeError):
            raise self._error(source, "malformed account payload")

        if statuses.status_code >= 400:
            raise self._error(source, f"statuses HTTP {statuses.status_code}")
        payload = self._json(source, statuses, "statuses")
        if not isinstance(payload, list):
            raise self._error(source, "malformed statuses payload")

        posts = []
        for status in payload:
            if not isinstance(status, dict) or status.get("visibility") not in _VISIBLE:
                continue
            try:
                posts.append(self._convert(source, status))
            except (KeyError, TypeError) as exc:
                logger.debug("[Mastodon] skipping malformed status from %s: %s", key, exc)
        return posts

    def _json(self, source: Source, response: httpx.Response, what: str) -> Any:
        try:
            return response.json()
        except ValueError:
            raise self._error(source, f"failed to parse {what} JSON")

    def _convert(self, source: Source, status: dict[str, Any]) -> Post:
        content = status.get("reblog") or status
        text = strip_html(content["content"])
        return self._build_post(
            source,
            guid=str(status["id"]),
            text=text,
            timestamp=parse_timestamp(status.get("created_at")),
            url=status.get("url") or content.get("url"),
        )
