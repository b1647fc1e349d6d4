"""
Health check endpoint.

Used by:
  - Container HEALTHCHECK and load balancers
  - The warm-up cron, to see whether the shared cache is populated

Returns status + DB connectivity so callers can distinguish between
"API down" and "API up but DB unreachable", plus the L1 cache state.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from watchfeed.core import database as db_module
from watchfeed.core.config import settings
from watchfeed.services.news_service import NewsService, get_news_service

router = APIRouter()


class CacheInfo(BaseModel):
    entries: dict[str, int]  # key → age in seconds
    in_flight: list[str]
    background_tasks: int = 0


class HealthResponse(BaseModel):
    status: str  # Always "ok" if the API process is alive
    version: str
    database: str  # "connected" | "disconnected"
    environment: str
    cache: CacheInfo


@router.get("", response_model=HealthResponse, summary="API health check")
async def health_check(service: NewsService = Depends(get_news_service)) -> HealthResponse:
    """
    Liveness of the API, its database connection and the feed cache.

    HTTP 200 even when the database is disconnected: the feed keeps working
    from L1 and live fetches without it.
    """
    # Module reference so tests can patch db_module.db_client
    db_status = "connected" if await db_module.db_client.ping() else "disconnected"

    return HealthResponse(
        status="ok",
        version="0.1.0",
        database=db_status,
        environment=settings.environment,
        cache=CacheInfo(**service.cache.info()),
    )
