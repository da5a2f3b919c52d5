"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from viewtrack.analytics.router import router as analytics_router
from viewtrack.config import get_settings
from viewtrack.database import close_db, init_db
from viewtrack.health.router import router as health_router
from viewtrack.middleware import setup_middleware
from viewtrack.redis_client import close_redis, init_redis
from viewtrack.tracking.router import router as tracking_router
from viewtrack.workers.jobs import build_scheduler

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    scheduler = None
    if settings.scheduler_enabled:
        scheduler = build_scheduler(settings)
        scheduler.start()
        logger.info("scheduler_started", jobs=[job["name"] for job in scheduler.get_status()["jobs"]])
    app.state.scheduler = scheduler

    yield

    if scheduler is not None:
        await scheduler.stop()
    app.state.scheduler = None

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="View Tracking API",
        description="Vendor profile and listing view tracking with deduplicated analytics",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(tracking_router)
    app.include_router(analytics_router)

    return app


app = create_app()
