"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from salesdojo.billing.router import router as billing_router
from salesdojo.config import get_settings
from salesdojo.database import close_db, init_db
from salesdojo.entitlements.router import router as entitlements_router
from salesdojo.health.router import router as health_router
from salesdojo.leaderboard.router import router as leaderboard_router
from salesdojo.middleware import setup_middleware
from salesdojo.progression.router import router as progression_router
from salesdojo.ratelimit.limiter import build_rate_limiter
from salesdojo.redis_client import close_redis, get_redis, init_redis
from salesdojo.sessions.router import router as sessions_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    app.state.rate_limiter = build_rate_limiter(
        settings.rate_limit_backend,
        redis=get_redis(),
        cleanup_interval_seconds=settings.rate_limit_cleanup_interval_seconds,
    )
    logger.info("rate_limiter_ready backend=%s", settings.rate_limit_backend)

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Sales Dojo API",
        description="Entitlements, credit metering and progression for sales-call practice",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(entitlements_router)
    app.include_router(sessions_router)
    app.include_router(billing_router)
    app.include_router(progression_router)
    app.include_router(leaderboard_router)

    return app


app = create_app()
