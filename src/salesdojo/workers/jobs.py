"""Scheduled maintenance jobs for the arq worker."""

from __future__ import annotations

import logging
from datetime import timedelta

from salesdojo.config import get_settings
from salesdojo.database import close_db, get_session_factory, init_db
from salesdojo.middleware.logging import setup_logging
from salesdojo.progression.engine import reconcile_progression
from salesdojo.sessions.ledger import abandon_stale_sessions

logger = logging.getLogger(__name__)


async def startup(ctx: dict) -> None:  # type: ignore[type-arg]
    """Initialize DB connections on worker startup."""
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)
    ctx["session_factory"] = get_session_factory()
    logger.info("Worker started")


async def shutdown(ctx: dict) -> None:  # type: ignore[type-arg]
    await close_db()
    logger.info("Worker stopped")


async def abandon_stale_sessions_job(ctx: dict) -> int:  # type: ignore[type-arg]
    """Abandon sessions left pending/active past the stale threshold (closed tabs, crashed clients)."""
    settings = get_settings()
    async with ctx["session_factory"]() as db:
        return await abandon_stale_sessions(db, timedelta(seconds=settings.stale_session_seconds))


async def reconcile_progression_job(ctx: dict) -> int:  # type: ignore[type-arg]
    """Apply progression that failed on the request path."""
    async with ctx["session_factory"]() as db:
        return await reconcile_progression(db, redis=ctx.get("redis"))
