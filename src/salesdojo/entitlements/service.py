"""Entitlement queries: load state, then resolve."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from salesdojo.accounts.service import get_account
from salesdojo.config import Settings, get_settings
from salesdojo.db.models import ContentItem
from salesdojo.entitlements.resolver import Entitlement, PlanLimits, resolve_entitlement


def plan_limits(settings: Settings | None = None) -> PlanLimits:
    settings = settings or get_settings()
    return PlanLimits(
        trial_max_session_seconds=settings.trial_max_session_seconds,
        paid_max_session_seconds=settings.paid_max_session_seconds,
        max_trial_purchases=settings.max_trial_purchases,
    )


async def load_catalog(db: AsyncSession) -> list[ContentItem]:
    result = await db.execute(select(ContentItem).order_by(ContentItem.id))
    return list(result.scalars())


async def resolve_account_entitlement(db: AsyncSession, account_id: int) -> Entitlement:
    """Load the account and catalog, then resolve. Raises AccountNotFound."""
    account = await get_account(db, account_id)
    return resolve_entitlement(account, await load_catalog(db), plan_limits())
