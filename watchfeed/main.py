"""
Watchfeed API — Application entry point.

Bootstraps FastAPI, wires up middleware, registers route groups,
and manages the MongoDB connection and warm-up loop lifecycle.

Extension points:
  - Add new route groups with app.include_router() below
  - Add new middleware in the middleware block
  - Change startup behaviour in the lifespan context manager

Run locally:
  uvicorn watchfeed.main:app --reload
"""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from watchfeed.core.config import settings
from watchfeed.core.database import close_mongo_connection, connect_to_mongo
from watchfeed.core.errors import InvalidQueryError
from watchfeed.core.rate_limit import limiter
from watchfeed.routes.health import router as health_router
from watchfeed.routes.news import router as news_router
from watchfeed.services.news_service import get_news_service, shutdown_news_service

# ─── Logging ───────────────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)


# ─── Warm-up loop ──────────────────────────────────────────────────────────────
async def warmup_loop(interval: float) -> None:
    """
    Periodically refresh the shared "all" entry so user requests hit a warm
    cache. This is also the cycle that retries sources that failed last time.
    """
    service = get_news_service()
    while True:
        try:
            await service.cache.fetch_with_cache("all", force=True)
        except Exception as exc:
            logger.error("Warm-up refresh failed: %s", exc)
        await asyncio.sleep(interval)


# ─── Lifespan ──────────────────────────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage startup and shutdown lifecycle.

    Code before `yield` runs on startup; code after runs on shutdown.
    """
    logger.info("Starting Watchfeed API (env: %s)", settings.environment)
    await connect_to_mongo()

    warm_task = None
    if settings.warmup_interval_seconds > 0:
        logger.info("Warm-up loop enabled every %ss", settings.warmup_interval_seconds)
        warm_task = asyncio.create_task(warmup_loop(settings.warmup_interval_seconds))

    yield

    logger.info("Shutting down Watchfeed API")
    if warm_task is not None:
        warm_task.cancel()
        with suppress(asyncio.CancelledError):
            await warm_task
    await shutdown_news_service()
    await close_mongo_connection()


# ─── App ───────────────────────────────────────────────────────────────────────
app = FastAPI(
    title="Watchfeed API",
    description=(
        "Near-real-time OSINT feed aggregation across Bluesky, Telegram and "
        "Mastodon, with regional activity anomaly detection."
    ),
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.environment != "production" else None,
    redoc_url="/redoc" if settings.environment != "production" else None,
)


# ─── Rate limiting ─────────────────────────────────────────────────────────────
# Routes opt-in with @limiter.limit(...) + request: Request parameter.
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


# ─── Errors ────────────────────────────────────────────────────────────────────
@app.exception_handler(InvalidQueryError)
async def invalid_query_handler(request: Request, exc: InvalidQueryError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": str(exc), "validRegions": exc.valid_values},
    )


# ─── Middleware ─────────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Routes ────────────────────────────────────────────────────────────────────
app.include_router(health_router, prefix="/health", tags=["health"])
app.include_router(news_router)


@app.get("/", tags=["root"])
async def root() -> dict:
    return {"message": "Watchfeed API", "docs": "/docs"}
