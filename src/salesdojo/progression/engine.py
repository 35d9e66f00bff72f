"""Progression engine: turns completed sessions into streak, power, tier and badges.

Progression for a session is claimed by stamping ``progression_applied_at``
with a conditional update, so it runs at most once per session even when the
request path and the reconciliation job race. The claim and every write it
guards share one transaction; a failure rolls all of it back and leaves the
session for ``reconcile_progression``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from salesdojo.clock import as_utc, utc_date, utcnow
from salesdojo.db.models import Account, EarnedBadge, Notification, PracticeSession
from salesdojo.errors import AccountNotFound, InvalidSessionState
from salesdojo.progression.badges import BADGES, BadgeDefinition, badge_progress, evaluate_rule
from salesdojo.progression.power import power_gained
from salesdojo.progression.stats import compute_badge_stats
from salesdojo.progression.streaks import advance_streak
from salesdojo.progression.tiers import compute_tier
from salesdojo.redis_client import publish_event
from salesdojo.sessions.ledger import FinalizeResult, finalize_session, get_session_record
from salesdojo.sessions.state import SessionStatus

logger = logging.getLogger(__name__)

BADGE_CHANNEL = "pubsub:badge_unlocked"
TIER_CHANNEL = "pubsub:tier_changed"


@dataclass
class SessionOutcome:
    session_id: str
    account_id: int
    power_gained: int = 0
    total_power: int = 0
    streak: int = 0
    longest_streak: int = 0
    multiplier: Decimal = Decimal("1.00")
    tier_changed: bool = False
    tier: str = ""
    belt: str = ""
    badges_unlocked: list[str] = field(default_factory=list)
    already_recorded: bool = False
    progression_deferred: bool = False
    finalize: FinalizeResult | None = None


def _outcome_from_account(session_id: str, account: Account, **kwargs) -> SessionOutcome:
    return SessionOutcome(
        session_id=session_id,
        account_id=account.id,
        total_power=account.power,
        streak=account.current_streak,
        longest_streak=account.longest_streak,
        multiplier=Decimal(account.streak_multiplier),
        tier=account.current_tier,
        belt=account.current_belt,
        **kwargs,
    )


async def _locked_account(db: AsyncSession, account_id: int) -> Account:
    result = await db.execute(
        select(Account)
        .where(Account.id == account_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    account = result.scalar_one_or_none()
    if account is None:
        raise AccountNotFound(account_id)
    return account


async def _award_badges(
    db: AsyncSession,
    account: Account,
    now: datetime,
) -> list[BadgeDefinition]:
    """Evaluate every unearned badge; each one in isolation."""
    earned = set(
        (await db.execute(select(EarnedBadge.badge_slug).where(EarnedBadge.account_id == account.id))).scalars()
    )
    stats = await compute_badge_stats(db, account, now)

    unlocked: list[BadgeDefinition] = []
    for badge in BADGES:
        if badge.slug in earned:
            continue
        try:
            if not evaluate_rule(badge.rule, stats):
                continue
        except Exception:
            logger.exception("badge_evaluation_failed slug=%s account_id=%s", badge.slug, account.id)
            continue

        progress, total = badge_progress(badge, stats)
        try:
            async with db.begin_nested():
                db.add(EarnedBadge(
                    account_id=account.id,
                    badge_slug=badge.slug,
                    earned_at=now,
                    progress=progress,
                    total=total,
                ))
        except IntegrityError:
            # Awarded concurrently.
            continue
        unlocked.append(badge)
        db.add(Notification(
            account_id=account.id,
            type="badge_earned",
            title=f'Badge Earned: "{badge.name}"',
            message=badge.description,
            extra={"badge_slug": badge.slug, "rarity": badge.rarity, "category": badge.category},
            created_at=now,
        ))
        logger.info("badge_unlocked slug=%s account_id=%s", badge.slug, account.id)

    account.badges_earned += len(unlocked)
    return unlocked


async def apply_progression(
    db: AsyncSession,
    session_id: str,
    redis: object = None,
    now: datetime | None = None,
) -> SessionOutcome:
    """Apply streak, power, tier and badge updates for one completed session.

    Returns ``already_recorded=True`` when progression for this session was
    applied before. Raises InvalidSessionState for sessions that are not
    completed; abandoned sessions never earn progression.
    """
    now = now or utcnow()

    claim = await db.execute(
        update(PracticeSession)
        .where(
            PracticeSession.id == session_id,
            PracticeSession.status == SessionStatus.COMPLETED,
            PracticeSession.progression_applied_at.is_(None),
        )
        .values(progression_applied_at=now)
        .execution_options(synchronize_session=False)
    )
    if claim.rowcount != 1:
        await db.rollback()
        session = await get_session_record(db, session_id)
        if session.status != SessionStatus.COMPLETED:
            raise InvalidSessionState(session_id, session.status.value, "no progression for this session")
        account = await db.get(Account, session.account_id, populate_existing=True)
        if account is None:
            raise AccountNotFound(session.account_id)
        return _outcome_from_account(session_id, account, already_recorded=True)

    session = await get_session_record(db, session_id)
    account = await _locked_account(db, session.account_id)
    account_id = account.id
    # Power and minutes follow the reported call length; billing uses the capped value.
    measured = session.duration_seconds or 0
    activity_at = as_utc(session.ended_at) or now

    streak = advance_streak(
        account.current_streak,
        account.longest_streak,
        account.last_activity_date,
        utc_date(activity_at),
    )
    gained = power_gained(measured, streak.multiplier)
    old_tier = (account.current_tier, account.current_belt)
    new_power = account.power + gained
    tier = compute_tier(new_power)
    tier_changed = (tier.tier, tier.belt) != old_tier

    account.current_streak = streak.current
    account.longest_streak = streak.longest
    account.last_activity_date = streak.last_activity_date
    account.streak_multiplier = streak.multiplier
    account.power = new_power
    account.current_tier = tier.tier
    account.current_belt = tier.belt
    account.total_sessions += 1
    account.total_minutes += measured // 60
    account.updated_at = now
    await db.flush()

    if tier_changed:
        db.add(Notification(
            account_id=account_id,
            type="belt_upgrade",
            title=f"New rank: {tier.tier} {tier.belt} Belt",
            message=f"You reached {tier.tier} {tier.belt} Belt with {new_power} power.",
            extra={"tier": tier.tier, "belt": tier.belt, "color": tier.color, "power": new_power},
            created_at=now,
        ))

    unlocked = await _award_badges(db, account, now)
    outcome = SessionOutcome(
        session_id=session_id,
        account_id=account_id,
        power_gained=gained,
        total_power=new_power,
        streak=streak.current,
        longest_streak=streak.longest,
        multiplier=streak.multiplier,
        tier_changed=tier_changed,
        tier=tier.tier,
        belt=tier.belt,
        badges_unlocked=[b.slug for b in unlocked],
    )
    await db.commit()

    logger.info(
        "progression_applied session_id=%s account_id=%s power_gained=%d streak=%d tier=%s/%s",
        session_id, account_id, gained, streak.current, tier.tier, tier.belt,
    )

    for badge in unlocked:
        await publish_event(redis, BADGE_CHANNEL, {
            "account_id": account_id,
            "badge_slug": badge.slug,
            "badge_name": badge.name,
            "rarity": badge.rarity,
        })
    if tier_changed:
        await publish_event(redis, TIER_CHANNEL, {
            "account_id": account_id,
            "tier": tier.tier,
            "belt": tier.belt,
            "power": new_power,
        })
    return outcome


async def record_session_outcome(
    db: AsyncSession,
    session_id: str,
    duration_seconds: int,
    account_id: int | None = None,
    redis: object = None,
    now: datetime | None = None,
) -> SessionOutcome:
    """Finalize the session, then apply progression.

    Finalization is committed first and is never undone by a progression
    failure; such failures are logged and the session is left for
    reconciliation (``progression_deferred=True``).
    """
    now = now or utcnow()
    finalized = await finalize_session(db, session_id, duration_seconds, account_id=account_id, now=now)
    if finalized.status != SessionStatus.COMPLETED:
        return SessionOutcome(session_id=session_id, account_id=finalized.account_id, finalize=finalized)

    try:
        outcome = await apply_progression(db, session_id, redis=redis, now=now)
    except Exception:
        logger.exception("progression_failed session_id=%s", session_id)
        await db.rollback()
        return SessionOutcome(
            session_id=session_id,
            account_id=finalized.account_id,
            progression_deferred=True,
            finalize=finalized,
        )

    outcome.finalize = finalized
    return outcome


async def reconcile_progression(
    db: AsyncSession,
    redis: object = None,
    now: datetime | None = None,
    grace: timedelta = timedelta(minutes=1),
    batch_size: int = 100,
) -> int:
    """Apply progression for completed sessions that never got it. Returns sessions applied."""
    now = now or utcnow()
    result = await db.execute(
        select(PracticeSession.id)
        .where(
            PracticeSession.status == SessionStatus.COMPLETED,
            PracticeSession.progression_applied_at.is_(None),
            PracticeSession.ended_at < now - grace,
        )
        .order_by(PracticeSession.ended_at)
        .limit(batch_size)
    )
    session_ids = list(result.scalars())

    applied = 0
    for session_id in session_ids:
        try:
            outcome = await apply_progression(db, session_id, redis=redis, now=now)
        except Exception:
            logger.exception("progression_reconcile_failed session_id=%s", session_id)
            await db.rollback()
            continue
        if not outcome.already_recorded:
            applied += 1

    if applied:
        logger.info("progression_reconciled count=%d", applied)
    return applied
