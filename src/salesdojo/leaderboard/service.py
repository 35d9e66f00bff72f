"""Leaderboard queries over cumulative power.

Read-only. Ranks are competition ranks: ``1 + number of accounts with more
power``, so tied accounts share a rank. Listings break ties by account id
(insertion order).
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from salesdojo.db.models import Account
from salesdojo.errors import AccountNotFound

logger = logging.getLogger(__name__)

CONTEXT_RADIUS = 2


def _entry(row, rank: int, current_account_id: int | None = None) -> dict:
    return {
        "rank": rank,
        "account_id": row.id,
        "display_name": row.display_name or f"Rep-{row.id}",
        "power": row.power,
        "tier": row.current_tier,
        "belt": row.current_belt,
        "current_streak": row.current_streak,
        "badges_earned": row.badges_earned,
        "is_current_user": current_account_id is not None and row.id == current_account_id,
    }


async def rank(db: AsyncSession, account_id: int) -> int:
    """1 + count of accounts with strictly more power."""
    power = (await db.execute(select(Account.power).where(Account.id == account_id))).scalar_one_or_none()
    if power is None:
        raise AccountNotFound(account_id)
    ahead = (await db.execute(select(func.count(Account.id)).where(Account.power > power))).scalar_one()
    return int(ahead) + 1


async def top_n(db: AsyncSession, limit: int = 50, current_account_id: int | None = None) -> list[dict]:
    """Highest power first, ties by account id. Accounts with no power are not listed."""
    result = await db.execute(
        select(
            Account.id,
            Account.display_name,
            Account.power,
            Account.current_tier,
            Account.current_belt,
            Account.current_streak,
            Account.badges_earned,
            (func.rank().over(order_by=Account.power.desc())).label("rank"),
        )
        .where(Account.power > 0)
        .order_by(Account.power.desc(), Account.id.asc())
        .limit(limit)
    )
    return [_entry(row, int(row.rank), current_account_id) for row in result]


async def context(db: AsyncSession, account_id: int, radius: int = CONTEXT_RADIUS) -> list[dict]:
    """The account's neighbourhood: up to `radius` positions either side in listing order."""
    ordered = (
        select(
            Account.id,
            Account.display_name,
            Account.power,
            Account.current_tier,
            Account.current_belt,
            Account.current_streak,
            Account.badges_earned,
            func.rank().over(order_by=Account.power.desc()).label("rank"),
            func.row_number().over(order_by=(Account.power.desc(), Account.id.asc())).label("position"),
        )
        .subquery()
    )
    mine = (
        await db.execute(select(ordered.c.position).where(ordered.c.id == account_id))
    ).scalar_one_or_none()
    if mine is None:
        raise AccountNotFound(account_id)

    result = await db.execute(
        select(ordered)
        .where(ordered.c.position.between(mine - radius, mine + radius))
        .order_by(ordered.c.position)
    )
    return [_entry(row, int(row.rank), account_id) for row in result]


async def total_ranked(db: AsyncSession) -> int:
    result = await db.execute(select(func.count(Account.id)).where(Account.power > 0))
    return int(result.scalar_one())
