"""Entitlement API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from salesdojo.auth.dependencies import get_current_account
from salesdojo.database import get_session
from salesdojo.db.models import Account
from salesdojo.entitlements.resolver import content_unlocked, resolve_entitlement
from salesdojo.entitlements.schemas import ContentItemResponse, EntitlementResponse
from salesdojo.entitlements.service import load_catalog, plan_limits
from salesdojo.ratelimit.dependency import rate_limit

router = APIRouter(prefix="/api/v1/entitlements", tags=["Entitlements"])


@router.get(
    "/me",
    response_model=EntitlementResponse,
    dependencies=[Depends(rate_limit("entitlements", "read"))],
)
async def get_my_entitlement(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
) -> EntitlementResponse:
    """What the caller may do right now, plus the catalog split into unlocked and locked items."""
    catalog = await load_catalog(db)
    ent = resolve_entitlement(account, catalog, plan_limits())
    return EntitlementResponse(
        plan=ent.plan,
        subscription_status=account.subscription_status,
        can_call=ent.can_call,
        is_overage=ent.is_overage,
        max_session_seconds=ent.max_session_seconds,
        trial_credits_remaining=account.trial_credits_remaining,
        tokens_remaining=account.tokens_remaining,
        trial_purchase_count=account.trial_purchase_count,
        can_purchase_another_trial_package=ent.can_purchase_another_trial_package,
        reason=ent.reason,
        content=[
            ContentItemResponse(
                id=item.id,
                name=item.name,
                description=item.description,
                tier_required=item.tier_required,
                is_boss=item.is_boss,
                locked=not content_unlocked(account.plan, item.tier_required),
            )
            for item in catalog
        ],
    )
