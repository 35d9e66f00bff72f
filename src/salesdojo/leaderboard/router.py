"""Leaderboard API endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from salesdojo.auth.dependencies import get_current_account
from salesdojo.database import get_session
from salesdojo.db.models import Account
from salesdojo.leaderboard import service
from salesdojo.leaderboard.schemas import LeaderboardEntry, LeaderboardResponse, MyRankResponse
from salesdojo.ratelimit.dependency import rate_limit

router = APIRouter(
    prefix="/api/v1/leaderboard",
    tags=["Leaderboard"],
    dependencies=[Depends(rate_limit("leaderboard", "read"))],
)


@router.get("", response_model=LeaderboardResponse)
async def get_leaderboard(
    limit: int = Query(50, ge=1, le=100),
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
) -> LeaderboardResponse:
    entries = await service.top_n(db, limit=limit, current_account_id=account.id)
    return LeaderboardResponse(
        entries=[LeaderboardEntry(**e) for e in entries],
        total=await service.total_ranked(db),
    )


@router.get("/me", response_model=MyRankResponse)
async def get_my_rank(
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
) -> MyRankResponse:
    """Caller's rank plus the two positions either side."""
    return MyRankResponse(
        rank=await service.rank(db, account.id),
        power=account.power,
        total=await service.total_ranked(db),
        context=[LeaderboardEntry(**e) for e in await service.context(db, account.id)],
    )
