"""
Marketing Metrics Dashboard
Main FastAPI application
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.gzip import GZipMiddleware

from metrics_dashboard import __version__
from metrics_dashboard.api import health, metrics, sync
from metrics_dashboard.api.deps import get_store
from metrics_dashboard.config import get_settings
from metrics_dashboard.middleware.cron_auth import CronAuthMiddleware
from metrics_dashboard.utils.logger import log

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    log.info(f"Starting {settings.app_name} v{__version__}")
    log.info(f"Environment: {settings.environment}")

    # Create tables and add any new columns
    try:
        get_store().ensure_schema()
        log.info("Database initialized")
    except Exception as e:
        log.error(f"Database initialization error: {str(e)}")

    if settings.enable_scheduler:
        from metrics_dashboard.scheduler import start_scheduler
        start_scheduler()

    yield

    if settings.enable_scheduler:
        from metrics_dashboard.scheduler import stop_scheduler
        stop_scheduler()
    log.info("Shutting down application")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="""
    Marketing metrics dashboard API

    Pulls daily metrics from Shopify, Meta, Google Ads, TikTok, Snapchat,
    Klaviyo and Instagram, stores them per day, and serves range summaries
    with year-over-year comparisons.
    """,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Only the scheduler may trigger syncs
app.add_middleware(CronAuthMiddleware)

app.add_middleware(GZipMiddleware, minimum_size=500)

# Include routers
app.include_router(health.router, tags=["health"])
app.include_router(metrics.router)
app.include_router(sync.router)
app.include_router(sync.backfill_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "metrics_dashboard.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug
    )
