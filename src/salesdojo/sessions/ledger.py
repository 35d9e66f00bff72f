"""Credit ledger: issue, activate, finalize and abandon practice sessions.

Every state change is a conditional UPDATE guarded on the expected current
state, so concurrent callers serialize on the row and exactly one of them
wins. Trial credit is consumed at issue time and never refunded.
"""

from __future__ import annotations

import logging
import math
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_, case, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from salesdojo.clock import as_utc, utcnow
from salesdojo.config import Settings, get_settings
from salesdojo.db.models import Account, ContentItem, PracticeSession
from salesdojo.entitlements.resolver import PAID, TRIAL, resolve_entitlement
from salesdojo.entitlements.service import plan_limits
from salesdojo.errors import (
    AccountNotFound,
    ContentNotAvailable,
    InsufficientCredit,
    InvalidSessionState,
    SessionNotFound,
)
from salesdojo.sessions.state import SessionStatus, require_transition, sources_for

logger = logging.getLogger(__name__)

# Plan flips between the read and the guarded update are retried this many times.
_ISSUE_ATTEMPTS = 2


@dataclass(frozen=True)
class AccessGrant:
    session_id: str
    access_token: str
    expires_at: datetime
    max_duration_seconds: int


@dataclass(frozen=True)
class FinalizeResult:
    session_id: str
    account_id: int
    status: SessionStatus
    duration_seconds: int
    billed_seconds: int
    tokens_charged: int
    is_overage: bool
    overage_charge_cents: int
    already_finalized: bool = False


@dataclass(frozen=True)
class AbandonResult:
    session_id: str
    status: SessionStatus
    changed: bool


def tokens_for_duration(billed_seconds: int, tokens_per_minute: int) -> int:
    """Tokens owed for a call, rounded up to the next whole token."""
    return math.ceil(billed_seconds * tokens_per_minute / 60)


def billable_seconds(measured_seconds: int, cap_seconds: int) -> int:
    return max(0, min(int(measured_seconds), cap_seconds))


async def get_session_record(
    db: AsyncSession,
    session_id: str,
    account_id: int | None = None,
) -> PracticeSession:
    """Fresh read of a session. A session owned by another account is reported as missing."""
    result = await db.execute(
        select(PracticeSession)
        .where(PracticeSession.id == session_id)
        .execution_options(populate_existing=True)
    )
    session = result.scalar_one_or_none()
    if session is None or (account_id is not None and session.account_id != account_id):
        raise SessionNotFound(session_id)
    return session


async def _fresh_account(db: AsyncSession, account_id: int) -> Account:
    result = await db.execute(
        select(Account).where(Account.id == account_id).execution_options(populate_existing=True)
    )
    account = result.scalar_one_or_none()
    if account is None:
        raise AccountNotFound(account_id)
    return account


def _consume_guard(account: Account):
    """WHERE clause under which the account may start a session on its current plan."""
    if account.plan == TRIAL:
        return and_(Account.plan == TRIAL, Account.trial_credits_remaining > 0)
    return and_(
        Account.plan == PAID,
        or_(Account.tokens_remaining > 0, Account.subscription_status == "active"),
    )


async def issue_session(
    db: AsyncSession,
    account_id: int,
    content_id: str,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> PracticeSession:
    """Re-check entitlement and consume credit in one statement, then create a pending session.

    Trial accounts lose one credit here. Paid accounts are charged at finalize;
    the guarded update still pins the entitlement check to the insert.

    Raises ContentNotAvailable, InsufficientCredit or AccountNotFound.
    """
    now = now or utcnow()
    settings = settings or get_settings()
    limits = plan_limits(settings)

    content = await db.get(ContentItem, content_id)
    if content is None:
        raise ContentNotAvailable(content_id)
    # Keep the loaded row usable across retry rollbacks.
    db.expunge(content)

    for _ in range(_ISSUE_ATTEMPTS):
        account = await _fresh_account(db, account_id)
        entitlement = resolve_entitlement(account, (content,), limits)
        if not entitlement.allows_content(content_id):
            raise ContentNotAvailable(content_id)
        if not entitlement.can_call:
            raise InsufficientCredit(account_id, entitlement.reason or "No session credit available")

        values: dict = {"updated_at": now}
        if account.plan == TRIAL:
            values["trial_credits_remaining"] = Account.trial_credits_remaining - 1

        result = await db.execute(
            update(Account)
            .where(Account.id == account_id, _consume_guard(account))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            break
        # Balance or plan changed under us; re-read and resolve again.
        await db.rollback()
    else:
        raise InsufficientCredit(account_id)

    session = PracticeSession(
        account_id=account_id,
        content_id=content_id,
        status=SessionStatus.PENDING,
        plan_at_issue=account.plan,
        max_duration_seconds=entitlement.max_session_seconds,
        created_at=now,
    )
    db.add(session)
    await db.commit()

    logger.info(
        "session_issued session_id=%s account_id=%s plan=%s content_id=%s overage=%s",
        session.id, account_id, account.plan, content_id, entitlement.is_overage,
    )
    return session


def _grant_from(session: PracticeSession) -> AccessGrant:
    return AccessGrant(
        session_id=session.id,
        access_token=session.access_token or "",
        expires_at=as_utc(session.access_token_expires_at),  # type: ignore[arg-type]
        max_duration_seconds=session.max_duration_seconds,
    )


def _reusable_token(session: PracticeSession, now: datetime) -> bool:
    return (
        session.status == SessionStatus.ACTIVE
        and session.access_token is not None
        and session.access_token_used_at is None
        and session.access_token_expires_at is not None
        and as_utc(session.access_token_expires_at) > now
    )


async def issue_access_token(
    db: AsyncSession,
    session_id: str,
    account_id: int | None = None,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> AccessGrant:
    """Move a pending session to active and hand out its single-use access token.

    Repeat calls while the token is unused and unexpired return the same token.
    """
    now = now or utcnow()
    settings = settings or get_settings()

    session = await get_session_record(db, session_id, account_id)
    if _reusable_token(session, now):
        return _grant_from(session)
    require_transition(session_id, session.status, SessionStatus.ACTIVE)
    max_duration = session.max_duration_seconds

    token = secrets.token_urlsafe(32)
    expires_at = now + timedelta(seconds=settings.access_token_ttl_seconds)
    result = await db.execute(
        update(PracticeSession)
        .where(
            PracticeSession.id == session_id,
            PracticeSession.status.in_(sources_for(SessionStatus.ACTIVE)),
        )
        .values(
            status=SessionStatus.ACTIVE,
            access_token=token,
            access_token_expires_at=expires_at,
            started_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        session = await get_session_record(db, session_id)
        if _reusable_token(session, now):
            return _grant_from(session)
        raise InvalidSessionState(session_id, session.status.value, "access token already issued")

    await db.commit()
    logger.info("access_token_issued session_id=%s expires_at=%s", session_id, expires_at.isoformat())
    return AccessGrant(
        session_id=session_id,
        access_token=token,
        expires_at=expires_at,
        max_duration_seconds=max_duration,
    )


async def redeem_access_token(
    db: AsyncSession,
    token: str,
    now: datetime | None = None,
) -> PracticeSession:
    """Exchange an access token exactly once. Expiry is checked here, at use time."""
    now = now or utcnow()
    result = await db.execute(select(PracticeSession).where(PracticeSession.access_token == token))
    session = result.scalar_one_or_none()
    if session is None:
        raise SessionNotFound("access-token")
    session_id = session.id

    result = await db.execute(
        update(PracticeSession)
        .where(
            PracticeSession.id == session_id,
            PracticeSession.status == SessionStatus.ACTIVE,
            PracticeSession.access_token == token,
            PracticeSession.access_token_used_at.is_(None),
            PracticeSession.access_token_expires_at > now,
        )
        .values(access_token_used_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        session = await get_session_record(db, session_id)
        if session.access_token_used_at is not None:
            reason = "access token already used"
        elif session.status != SessionStatus.ACTIVE:
            reason = "session is not active"
        else:
            reason = "access token expired"
        raise InvalidSessionState(session_id, session.status.value, reason)

    await db.commit()
    logger.info("access_token_redeemed session_id=%s", session_id)
    return await get_session_record(db, session_id)


def _result_from(session: PracticeSession, already_finalized: bool) -> FinalizeResult:
    return FinalizeResult(
        session_id=session.id,
        account_id=session.account_id,
        status=session.status,
        duration_seconds=session.duration_seconds or 0,
        billed_seconds=session.billed_seconds or 0,
        tokens_charged=session.tokens_charged,
        is_overage=session.is_overage,
        overage_charge_cents=session.overage_charge_cents,
        already_finalized=already_finalized,
    )


async def finalize_session(
    db: AsyncSession,
    session_id: str,
    measured_duration_seconds: int,
    account_id: int | None = None,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> FinalizeResult:
    """Complete an active session and meter paid usage.

    A repeat call on a completed session is a no-op. Pending or abandoned
    sessions raise InvalidSessionState. Losing the status update to a
    concurrent abandon returns the abandoned state with nothing charged.
    """
    now = now or utcnow()
    settings = settings or get_settings()

    session = await get_session_record(db, session_id, account_id)
    if session.status == SessionStatus.COMPLETED:
        return _result_from(session, already_finalized=True)
    require_transition(session_id, session.status, SessionStatus.COMPLETED)

    billed = billable_seconds(measured_duration_seconds, session.max_duration_seconds)
    result = await db.execute(
        update(PracticeSession)
        .where(
            PracticeSession.id == session_id,
            PracticeSession.status.in_(sources_for(SessionStatus.COMPLETED)),
        )
        .values(
            status=SessionStatus.COMPLETED,
            ended_at=now,
            duration_seconds=max(0, int(measured_duration_seconds)),
            billed_seconds=billed,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        # Lost the race against abandon (or a concurrent finalize).
        await db.rollback()
        session = await get_session_record(db, session_id)
        if session.status == SessionStatus.COMPLETED:
            return _result_from(session, already_finalized=True)
        logger.info("finalize_lost_race session_id=%s status=%s", session_id, session.status.value)
        return FinalizeResult(
            session_id=session_id,
            account_id=session.account_id,
            status=session.status,
            duration_seconds=0,
            billed_seconds=0,
            tokens_charged=0,
            is_overage=False,
            overage_charge_cents=0,
        )

    tokens_charged = 0
    is_overage = False
    overage_cents = 0
    if session.plan_at_issue == PAID:
        owed = tokens_for_duration(billed, settings.tokens_per_minute)
        balance = (
            await db.execute(
                select(Account.tokens_remaining).where(Account.id == session.account_id).with_for_update()
            )
        ).scalar_one()
        is_overage = owed > balance or balance == 0
        tokens_charged = min(owed, balance)
        overage_cents = settings.overage_charge_cents if is_overage else 0
        await db.execute(
            update(Account)
            .where(Account.id == session.account_id)
            .values(
                tokens_remaining=case(
                    (Account.tokens_remaining >= tokens_charged, Account.tokens_remaining - tokens_charged),
                    else_=0,
                ),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await db.execute(
            update(PracticeSession)
            .where(PracticeSession.id == session_id)
            .values(tokens_charged=tokens_charged, is_overage=is_overage, overage_charge_cents=overage_cents)
            .execution_options(synchronize_session=False)
        )

    await db.commit()
    logger.info(
        "session_finalized session_id=%s billed_seconds=%d tokens=%d overage=%s",
        session_id, billed, tokens_charged, is_overage,
    )
    return FinalizeResult(
        session_id=session_id,
        account_id=session.account_id,
        status=SessionStatus.COMPLETED,
        duration_seconds=max(0, int(measured_duration_seconds)),
        billed_seconds=billed,
        tokens_charged=tokens_charged,
        is_overage=is_overage,
        overage_charge_cents=overage_cents,
    )


async def abandon_session(
    db: AsyncSession,
    session_id: str,
    account_id: int | None = None,
    now: datetime | None = None,
    max_age: timedelta | None = None,
) -> AbandonResult:
    """Mark a pending or active session abandoned. Credit already consumed is kept.

    Idempotent on abandoned sessions, and a no-op on completed ones. With
    `max_age`, sessions created earlier than `now - max_age` are reported as
    missing (SessionNotFound).
    """
    now = now or utcnow()
    session = await get_session_record(db, session_id, account_id)
    if max_age is not None and as_utc(session.created_at) <= now - max_age:
        raise SessionNotFound(session_id)
    if session.status.is_terminal:
        return AbandonResult(session_id, session.status, changed=False)

    result = await db.execute(
        update(PracticeSession)
        .where(
            PracticeSession.id == session_id,
            PracticeSession.status.in_(sources_for(SessionStatus.ABANDONED)),
        )
        .values(status=SessionStatus.ABANDONED, ended_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        session = await get_session_record(db, session_id)
        return AbandonResult(session_id, session.status, changed=False)

    await db.commit()
    logger.info("session_abandoned session_id=%s", session_id)
    return AbandonResult(session_id, SessionStatus.ABANDONED, changed=True)


async def abandon_stale_sessions(
    db: AsyncSession,
    older_than: timedelta | None = None,
    now: datetime | None = None,
) -> int:
    """Abandon pending/active sessions created before `now - older_than`. Returns rows changed."""
    now = now or utcnow()
    if older_than is None:
        older_than = timedelta(seconds=get_settings().stale_session_seconds)
    cutoff = now - older_than
    result = await db.execute(
        update(PracticeSession)
        .where(
            PracticeSession.status.in_(sources_for(SessionStatus.ABANDONED)),
            PracticeSession.created_at < cutoff,
        )
        .values(status=SessionStatus.ABANDONED, ended_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    count = result.rowcount or 0
    if count:
        logger.info("stale_sessions_abandoned count=%d cutoff=%s", count, cutoff.isoformat())
    return count
