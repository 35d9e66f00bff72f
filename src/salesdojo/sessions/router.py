"""Practice session API endpoints."""

from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from salesdojo.auth.dependencies import get_current_account, get_optional_account
from salesdojo.config import get_settings
from salesdojo.database import get_session
from salesdojo.db.models import Account
from salesdojo.dependencies import get_optional_redis_dep
from salesdojo.progression.engine import record_session_outcome
from salesdojo.ratelimit.dependency import account_rate_limit, by_path_param, rate_limit
from salesdojo.sessions import ledger
from salesdojo.sessions.schemas import (
    AbandonResponse,
    AccessTokenResponse,
    FinalizeRequest,
    FinalizeResponse,
    IssueSessionRequest,
    RedeemRequest,
    RedeemResponse,
    SessionResponse,
)

router = APIRouter(prefix="/api/v1/sessions", tags=["Sessions"])


@router.post("", response_model=SessionResponse, status_code=201)
async def issue_session(
    body: IssueSessionRequest,
    account: Account = Depends(account_rate_limit("sessions", "expensive")),
    db: AsyncSession = Depends(get_session),
) -> SessionResponse:
    """Consume entitlement and create a pending session for a content item."""
    session = await ledger.issue_session(db, account.id, body.content_id)
    return SessionResponse(
        session_id=session.id,
        content_id=session.content_id,
        status=session.status.value,
        plan=session.plan_at_issue,
        max_duration_seconds=session.max_duration_seconds,
        created_at=session.created_at,
    )


@router.post("/access-token/redeem", response_model=RedeemResponse)
async def redeem_access_token(
    body: RedeemRequest,
    db: AsyncSession = Depends(get_session),
    _rl: None = Depends(rate_limit("redeem", "standard")),
) -> RedeemResponse:
    """Single-use exchange of an access token by the voice provider."""
    session = await ledger.redeem_access_token(db, body.access_token)
    return RedeemResponse(
        session_id=session.id,
        content_id=session.content_id,
        max_duration_seconds=session.max_duration_seconds,
    )


@router.post("/{session_id}/access-token", response_model=AccessTokenResponse)
async def issue_access_token(
    session_id: str,
    account: Account = Depends(account_rate_limit("access-token", "standard")),
    db: AsyncSession = Depends(get_session),
) -> AccessTokenResponse:
    grant = await ledger.issue_access_token(db, session_id, account_id=account.id)
    return AccessTokenResponse(
        session_id=grant.session_id,
        access_token=grant.access_token,
        expires_at=grant.expires_at,
        max_duration_seconds=grant.max_duration_seconds,
    )


@router.post("/{session_id}/finalize", response_model=FinalizeResponse)
async def finalize_session(
    session_id: str,
    body: FinalizeRequest,
    account: Account = Depends(account_rate_limit("finalize", "standard")),
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_optional_redis_dep),
) -> FinalizeResponse:
    """Complete the session, meter usage and apply progression."""
    outcome = await record_session_outcome(
        db, session_id, body.duration_seconds, account_id=account.id, redis=redis,
    )
    fin = outcome.finalize
    return FinalizeResponse(
        session_id=session_id,
        status=fin.status.value if fin else "completed",
        billed_seconds=fin.billed_seconds if fin else 0,
        tokens_charged=fin.tokens_charged if fin else 0,
        is_overage=fin.is_overage if fin else False,
        overage_charge_cents=fin.overage_charge_cents if fin else 0,
        already_finalized=fin.already_finalized if fin else False,
        power_gained=outcome.power_gained,
        total_power=outcome.total_power,
        streak=outcome.streak,
        multiplier=float(outcome.multiplier),
        tier_changed=outcome.tier_changed,
        tier=outcome.tier,
        belt=outcome.belt,
        badges_unlocked=outcome.badges_unlocked,
        progression_deferred=outcome.progression_deferred,
    )


@router.post(
    "/{session_id}/abandon",
    response_model=AbandonResponse,
    dependencies=[Depends(rate_limit("abandon", "standard", key_func=by_path_param("session_id")))],
)
async def abandon_session(
    session_id: str,
    account: Account | None = Depends(get_optional_account),
    db: AsyncSession = Depends(get_session),
) -> AbandonResponse:
    """Abandon a session. Also accepts unauthenticated page-unload beacons for recent sessions."""
    if account is None:
        max_age = timedelta(seconds=get_settings().beacon_abandon_max_age_seconds)
        result = await ledger.abandon_session(db, session_id, max_age=max_age)
    else:
        result = await ledger.abandon_session(db, session_id, account_id=account.id)
    return AbandonResponse(session_id=result.session_id, status=result.status.value, changed=result.changed)
