"""Progression API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from salesdojo.auth.dependencies import get_current_account
from salesdojo.clock import as_utc
from salesdojo.database import get_session
from salesdojo.db.models import Account, EarnedBadge
from salesdojo.progression.badges import BADGES, BADGES_BY_SLUG
from salesdojo.progression.schemas import (
    AllBadgesResponse,
    AllTiersResponse,
    BadgeDefinitionResponse,
    EarnedBadgeResponse,
    ProgressionResponse,
    TierEntry,
)
from salesdojo.progression.tiers import TIER_TABLE, tier_progress
from salesdojo.ratelimit.dependency import rate_limit

router = APIRouter(
    prefix="/api/v1/progression",
    tags=["Progression"],
    dependencies=[Depends(rate_limit("progression", "read"))],
)


# ── Public endpoints ──


@router.get("/tiers", response_model=AllTiersResponse)
async def list_tiers() -> AllTiersResponse:
    """All 49 tier/belt ranges."""
    return AllTiersResponse(tiers=[
        TierEntry(tier=t.tier, belt=t.belt, color=t.color, min_power=t.min_power, max_power=t.max_power)
        for t in TIER_TABLE
    ])


@router.get("/badges", response_model=AllBadgesResponse)
async def list_badges() -> AllBadgesResponse:
    return AllBadgesResponse(badges=[
        BadgeDefinitionResponse(
            slug=b.slug,
            name=b.name,
            description=b.description,
            category=b.category,
            rarity=b.rarity,
            progress_total=b.progress_total,
        )
        for b in BADGES
    ])


# ── Authenticated endpoints ──


@router.get("/me", response_model=ProgressionResponse)
async def get_my_progression(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
) -> ProgressionResponse:
    """Power, rank, streak and earned badges for the caller."""
    result = await db.execute(
        select(EarnedBadge).where(EarnedBadge.account_id == account.id).order_by(EarnedBadge.earned_at)
    )
    earned = []
    for eb in result.scalars():
        badge = BADGES_BY_SLUG.get(eb.badge_slug)
        earned.append(EarnedBadgeResponse(
            slug=eb.badge_slug,
            name=badge.name if badge else eb.badge_slug,
            rarity=badge.rarity if badge else "common",
            earned_at=as_utc(eb.earned_at),
            progress=eb.progress,
            total=eb.total,
        ))

    progress = tier_progress(account.power)
    return ProgressionResponse(
        power=account.power,
        tier=progress["tier"],
        belt=progress["belt"],
        color=progress["color"],
        power_into_belt=progress["power_into_belt"],
        power_for_belt=progress["power_for_belt"],
        next_tier=progress["next_tier"],
        next_belt=progress["next_belt"],
        current_streak=account.current_streak,
        longest_streak=account.longest_streak,
        last_activity_date=account.last_activity_date,
        streak_multiplier=float(account.streak_multiplier),
        total_sessions=account.total_sessions,
        total_minutes=account.total_minutes,
        badges_earned=earned,
        total_badges_available=len(BADGES),
    )
