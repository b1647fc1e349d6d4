"""
news.py — Feed routes.

Routes:
  GET  /news          — composed feed + regional activity for one region
  POST /news/warmup   — non-blocking refresh of the canonical "all" entry

QUERY PARAMETERS (GET /news)
────────────────────────────
  region   one of VALID_REGIONS, default "all" (also when empty); anything
           else → 400 with the list of valid values
  hours    1..72, default 6      ┐ parsed leniently: leading integer wins,
  limit    1..5000, default 2000 ┘ garbage → default, out of range → clamped
  since    ISO-8601; keeps items strictly newer, marks the response
           incremental; unparseable values are ignored
  refresh  "true" bypasses both cache tiers

FAILURE BEHAVIOUR
─────────────────
Any failure while building the feed falls back to the best cached entry of
any age (flagged partial/stale). 500 only when no cache exists anywhere.

TESTING
───────
  pytest tests/test_news_route.py -v

  curl "http://localhost:8000/news?region=middle-east&hours=12"
  curl "http://localhost:8000/news?since=2026-01-01T12:00:00Z"
  curl -X POST http://localhost:8000/news/warmup
"""

import logging
import re
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from watchfeed.core.config import settings
from watchfeed.core.errors import InvalidQueryError
from watchfeed.core.rate_limit import limiter
from watchfeed.models.news import NewsResponse, WarmupResponse
from watchfeed.models.region import VALID_REGIONS, Region
from watchfeed.services.news_service import NewsService, get_news_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/news", tags=["news"])

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")
_FALLBACK_ONLY_FIELDS = ("partial", "stale", "error")


def parse_bounded_int(raw: Optional[str], default: int, maximum: int) -> int:
    """Leading integer of *raw* clamped to [1, maximum]; default when absent or unparseable."""
    match = _LEADING_INT.match(raw) if raw is not None else None
    value = int(match.group(1)) if match else default
    return min(max(1, value), maximum)


def parse_since(raw: Optional[str]) -> Optional[datetime]:
    if not raw:
        return None
    try:
        parsed = datetime.fromisoformat(raw.strip().replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Ignoring unparseable since=%r", raw)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _body(response: NewsResponse) -> dict:
    body = response.model_dump(mode="json", by_alias=True)
    for key in _FALLBACK_ONLY_FIELDS:
        if body.get(key) is None:
            body.pop(key, None)
    return body


@router.get("", summary="Composed OSINT feed with regional activity")
@limiter.limit(settings.news_rate_limit)
async def get_news(
    request: Request,
    region: str = Region.ALL.value,
    hours: Optional[str] = None,
    limit: Optional[str] = None,
    since: Optional[str] = None,
    refresh: Optional[str] = None,
    service: NewsService = Depends(get_news_service),
) -> JSONResponse:
    region = region or Region.ALL.value
    if region not in VALID_REGIONS:
        raise InvalidQueryError("region", VALID_REGIONS)

    hours_window = parse_bounded_int(hours, settings.default_hours, settings.max_hours)
    max_items = parse_bounded_int(limit, settings.default_limit, settings.max_limit)
    since_cutoff = parse_since(since)
    force = refresh == "true"

    try:
        response = await service.get_news(
            region, hours_window, max_items, since=since_cutoff, refresh=force,
        )
        return JSONResponse(content=_body(response))
    except Exception as exc:
        logger.error("News request failed for region=%s: %s", region, exc)

    fallback = await service.get_fallback(region, hours_window, max_items)
    if fallback is not None:
        return JSONResponse(content=_body(fallback))

    return JSONResponse(
        status_code=500,
        content={"error": "Failed to fetch news", "items": [], "activity": {}},
    )


@router.post("/warmup", status_code=202, response_model=WarmupResponse, summary="Refresh the shared cache")
async def warmup(service: NewsService = Depends(get_news_service)) -> WarmupResponse:
    accepted = service.warm()
    logger.info("Warm-up requested (%s)", "started" if accepted else "already running")
    return WarmupResponse(accepted=accepted, key=Region.ALL.value)
