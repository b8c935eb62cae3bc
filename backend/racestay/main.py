"""
Race Stay Points API - Main Application Entry Point

Settlement engine of a runner-hosting marketplace:
- Booking state machine with conditional, all-or-nothing transitions
- Points ledger with atomic balance updates and an append-only history
- Subscription webhook reconciliation with idempotent replays
- Background scheduler for expiry, confirmation and completion sweeps
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from racestay.core.config import get_settings
from racestay.core.exceptions import RaceStayError, race_stay_error_handler
from racestay.core.logging import setup_logging, get_logger
from racestay.core.metrics import metrics_endpoint
from racestay.api.router import api_router
from racestay.api.middleware import RequestLoggingMiddleware
from racestay.db.session import SessionLocal
from racestay.services.cache_service import get_redis, close_redis, get_cache_stats
from racestay.services.scheduled_jobs import default_jobs
from racestay.services.scheduler import BackgroundScheduler

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )

    redis_client = await get_redis()
    if redis_client:
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Running without cache")

    scheduler = BackgroundScheduler(
        SessionLocal,
        default_jobs(settings),
        tick_seconds=settings.SCHEDULER_TICK_SECONDS,
    )
    app.state.scheduler = scheduler
    if settings.SCHEDULER_ENABLED:
        scheduler.start()

    yield

    await scheduler.stop()
    await close_redis()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    debug=settings.DEBUG,
    description="Points-based booking settlement for runners hosting runners",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)

app.add_exception_handler(RaceStayError, race_stay_error_handler)

app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    cache_stats = await get_cache_stats()
    scheduler = getattr(app.state, "scheduler", None)
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "cache": cache_stats,
        "scheduler": "running" if scheduler and scheduler.running else "stopped",
    }


@app.get("/metrics", tags=["Health"])
def metrics():
    return metrics_endpoint()
