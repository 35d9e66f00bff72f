"""Badge statistics: category rates plus activity counts derived from sessions."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from salesdojo.clock import utcnow
from salesdojo.db.models import Account, AccountStatistics, PracticeSession
from salesdojo.errors import AccountNotFound
from salesdojo.sessions.state import SessionStatus

logger = logging.getLogger(__name__)

RATE_FIELDS = ("objection_success_rate", "closing_rate", "average_wpm", "average_score")


async def upsert_account_statistics(
    db: AsyncSession,
    account_id: int,
    now: datetime | None = None,
    **rates: Any,
) -> AccountStatistics:
    """Write path for the call-scoring collaborator. Unknown keys raise ValueError."""
    unknown = set(rates) - set(RATE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown statistics fields: {sorted(unknown)}")
    if await db.get(Account, account_id) is None:
        raise AccountNotFound(account_id)

    now = now or utcnow()
    row = await db.get(AccountStatistics, account_id)
    if row is None:
        row = AccountStatistics(account_id=account_id)
        db.add(row)
    for key, value in rates.items():
        setattr(row, key, value)
    row.updated_at = now
    await db.commit()
    return row


async def _completed_since(db: AsyncSession, account_id: int, since: datetime) -> int:
    result = await db.execute(
        select(func.count(PracticeSession.id)).where(
            PracticeSession.account_id == account_id,
            PracticeSession.status == SessionStatus.COMPLETED,
            PracticeSession.ended_at >= since,
        )
    )
    return int(result.scalar_one())


async def compute_badge_stats(db: AsyncSession, account: Account, now: datetime | None = None) -> dict[str, Any]:
    """Snapshot of every stat a badge rule may reference."""
    now = now or utcnow()
    day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)

    rates = await db.get(AccountStatistics, account.id)
    return {
        "total_sessions": account.total_sessions,
        "total_minutes": account.total_minutes,
        "current_streak": account.current_streak,
        "longest_streak": account.longest_streak,
        "power": account.power,
        "sessions_today": await _completed_since(db, account.id, day_start),
        "sessions_last_hour": await _completed_since(db, account.id, now - timedelta(hours=1)),
        "objection_success_rate": rates.objection_success_rate if rates else 0.0,
        "closing_rate": rates.closing_rate if rates else 0.0,
        "average_wpm": rates.average_wpm if rates else 0,
        "average_score": rates.average_score if rates else 0.0,
    }
