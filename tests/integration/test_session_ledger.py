"""Credit ledger tests: issue, access tokens, finalize, abandon, and their races."""

from __future__ import annotations

import asyncio
from unittest.mock import patch
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from salesdojo.config import get_settings
from salesdojo.db.models import Account, PracticeSession
from salesdojo.errors import ContentNotAvailable, InsufficientCredit, InvalidSessionState, SessionNotFound
from salesdojo.sessions import ledger
from salesdojo.sessions.state import SessionStatus

NOW = datetime(2025, 1, 10, 12, 0, tzinfo=timezone.utc)


async def _reload(db, model, key):
    return await db.get(model, key, populate_existing=True)


async def _active_session(db, account_id, content_id="cold_call_basics", now=NOW):
    session = await ledger.issue_session(db, account_id, content_id, now=now)
    await ledger.issue_access_token(db, session.id, account_id=account_id, now=now)
    return session


class TestIssueSession:
    @pytest.mark.asyncio
    async def test_trial_issue_consumes_one_credit(self, db_session, make_account, catalog):
        account = await make_account(trial_credits_remaining=2)

        session = await ledger.issue_session(db_session, account.id, "cold_call_basics", now=NOW)

        assert session.status == SessionStatus.PENDING
        assert session.plan_at_issue == "trial"
        assert session.max_duration_seconds == 90
        account = await _reload(db_session, Account, account.id)
        assert account.trial_credits_remaining == 1

    @pytest.mark.asyncio
    async def test_no_credit_raises(self, db_session, make_account, catalog):
        account = await make_account(trial_credits_remaining=0)
        with pytest.raises(InsufficientCredit):
            await ledger.issue_session(db_session, account.id, "cold_call_basics", now=NOW)
        sessions = (await db_session.execute(select(PracticeSession))).scalars().all()
        assert sessions == []

    @pytest.mark.asyncio
    async def test_trial_cannot_open_paid_content(self, db_session, make_account, catalog):
        account = await make_account()
        with pytest.raises(ContentNotAvailable):
            await ledger.issue_session(db_session, account.id, "cfo_boss", now=NOW)
        account = await _reload(db_session, Account, account.id)
        assert account.trial_credits_remaining == 5

    @pytest.mark.asyncio
    async def test_unknown_content(self, db_session, make_account, catalog):
        account = await make_account()
        with pytest.raises(ContentNotAvailable):
            await ledger.issue_session(db_session, account.id, "no_such_persona", now=NOW)

    @pytest.mark.asyncio
    async def test_paid_issue_does_not_touch_tokens(self, db_session, make_account, catalog):
        account = await make_account(plan="paid", subscription_status="active", tokens_remaining=1000)
        session = await ledger.issue_session(db_session, account.id, "cfo_boss", now=NOW)
        assert session.max_duration_seconds == 300
        account = await _reload(db_session, Account, account.id)
        assert account.tokens_remaining == 1000

    @pytest.mark.asyncio
    async def test_paid_cancelled_without_tokens_refused(self, db_session, make_account, catalog):
        account = await make_account(plan="paid", subscription_status="cancelled", tokens_remaining=0)
        with pytest.raises(InsufficientCredit):
            await ledger.issue_session(db_session, account.id, "cfo_boss", now=NOW)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("attempts", [1, 2, 6])
    async def test_concurrent_issue_against_one_credit(self, session_factory, make_account, catalog, attempts):
        account = await make_account(trial_credits_remaining=1)

        async def _attempt():
            async with session_factory() as db:
                return await ledger.issue_session(db, account.id, "cold_call_basics", now=NOW)

        results = await asyncio.gather(*(_attempt() for _ in range(attempts)), return_exceptions=True)

        issued = [r for r in results if isinstance(r, PracticeSession)]
        refused = [r for r in results if isinstance(r, InsufficientCredit)]
        assert len(issued) == 1
        assert len(refused) == attempts - 1

        async with session_factory() as db:
            fresh = await db.get(Account, account.id)
            assert fresh.trial_credits_remaining == 0


class TestAccessToken:
    @pytest.mark.asyncio
    async def test_issue_activates_session(self, db_session, make_account, catalog):
        account = await make_account()
        session = await ledger.issue_session(db_session, account.id, "cold_call_basics", now=NOW)

        grant = await ledger.issue_access_token(db_session, session.id, account_id=account.id, now=NOW)

        assert grant.access_token
        assert grant.expires_at == NOW + timedelta(seconds=get_settings().access_token_ttl_seconds)
        session = await ledger.get_session_record(db_session, session.id)
        assert session.status == SessionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_second_call_returns_same_token(self, db_session, make_account, catalog):
        account = await make_account()
        session = await ledger.issue_session(db_session, account.id, "cold_call_basics", now=NOW)
        first = await ledger.issue_access_token(db_session, session.id, now=NOW)
        second = await ledger.issue_access_token(db_session, session.id, now=NOW + timedelta(minutes=1))
        assert second.access_token == first.access_token

    @pytest.mark.asyncio
    async def test_completed_session_refuses_token(self, db_session, make_account, catalog):
        account = await make_account()
        session = await _active_session(db_session, account.id)
        await ledger.finalize_session(db_session, session.id, 60, now=NOW)
        with pytest.raises(InvalidSessionState):
            await ledger.issue_access_token(db_session, session.id, now=NOW)

    @pytest.mark.asyncio
    async def test_other_accounts_session_is_not_found(self, db_session, make_account, catalog):
        owner = await make_account()
        other = await make_account()
        session = await ledger.issue_session(db_session, owner.id, "cold_call_basics", now=NOW)
        with pytest.raises(SessionNotFound):
            await ledger.issue_access_token(db_session, session.id, account_id=other.id, now=NOW)

    @pytest.mark.asyncio
    async def test_redeem_once(self, db_session, make_account, catalog):
        account = await make_account()
        session = await ledger.issue_session(db_session, account.id, "cold_call_basics", now=NOW)
        grant = await ledger.issue_access_token(db_session, session.id, now=NOW)

        redeemed = await ledger.redeem_access_token(db_session, grant.access_token, now=NOW)
        assert redeemed.id == session.id

        with pytest.raises(InvalidSessionState, match="already used"):
            await ledger.redeem_access_token(db_session, grant.access_token, now=NOW)

    @pytest.mark.asyncio
    async def test_redeem_after_expiry(self, db_session, make_account, catalog):
        account = await make_account()
        session = await ledger.issue_session(db_session, account.id, "cold_call_basics", now=NOW)
        grant = await ledger.issue_access_token(db_session, session.id, now=NOW)
        with pytest.raises(InvalidSessionState, match="expired"):
            await ledger.redeem_access_token(db_session, grant.access_token, now=NOW + timedelta(minutes=16))

    @pytest.mark.asyncio
    async def test_redeem_unknown_token(self, db_session, catalog):
        with pytest.raises(SessionNotFound):
            await ledger.redeem_access_token(db_session, "not-a-token", now=NOW)


class TestFinalize:
    @pytest.mark.asyncio
    async def test_trial_finalize_caps_duration(self, db_session, make_account, catalog):
        account = await make_account()
        session = await _active_session(db_session, account.id)

        result = await ledger.finalize_session(db_session, session.id, 200, now=NOW)

        assert result.status == SessionStatus.COMPLETED
        assert result.duration_seconds == 200
        assert result.billed_seconds == 90
        assert result.tokens_charged == 0

    @pytest.mark.asyncio
    async def test_paid_finalize_deducts_tokens(self, db_session, make_account, catalog):
        account = await make_account(plan="paid", subscription_status="active", tokens_remaining=20_000)
        session = await _active_session(db_session, account.id, "cfo_boss")

        result = await ledger.finalize_session(db_session, session.id, 90, now=NOW)

        # 90s at 200 tokens/minute
        assert result.tokens_charged == 300
        assert result.is_overage is False
        account = await _reload(db_session, Account, account.id)
        assert account.tokens_remaining == 19_700

    @pytest.mark.asyncio
    async def test_paid_finalize_overage(self, db_session, make_account, catalog):
        account = await make_account(plan="paid", subscription_status="active", tokens_remaining=100)
        session = await _active_session(db_session, account.id, "cfo_boss")

        result = await ledger.finalize_session(db_session, session.id, 300, now=NOW)

        assert result.is_overage is True
        assert result.tokens_charged == 100
        assert result.overage_charge_cents == get_settings().overage_charge_cents
        account = await _reload(db_session, Account, account.id)
        assert account.tokens_remaining == 0

    @pytest.mark.asyncio
    async def test_paid_finalize_with_empty_balance(self, db_session, make_account, catalog):
        account = await make_account(plan="paid", subscription_status="active", tokens_remaining=0)
        session = await _active_session(db_session, account.id, "cfo_boss")

        result = await ledger.finalize_session(db_session, session.id, 30, now=NOW)

        assert result.is_overage is True
        assert result.tokens_charged == 0
        account = await _reload(db_session, Account, account.id)
        assert account.tokens_remaining == 0

    @pytest.mark.asyncio
    async def test_finalize_twice_is_noop(self, db_session, make_account, catalog):
        account = await make_account(plan="paid", subscription_status="active", tokens_remaining=1000)
        session = await _active_session(db_session, account.id, "cfo_boss")

        await ledger.finalize_session(db_session, session.id, 60, now=NOW)
        again = await ledger.finalize_session(db_session, session.id, 60, now=NOW)

        assert again.already_finalized is True
        account = await _reload(db_session, Account, account.id)
        assert account.tokens_remaining == 800

    @pytest.mark.asyncio
    async def test_finalize_pending_session_rejected(self, db_session, make_account, catalog):
        account = await make_account()
        session = await ledger.issue_session(db_session, account.id, "cold_call_basics", now=NOW)
        with pytest.raises(InvalidSessionState):
            await ledger.finalize_session(db_session, session.id, 60, now=NOW)

    @pytest.mark.asyncio
    async def test_finalize_abandoned_session_rejected(self, db_session, make_account, catalog):
        account = await make_account()
        session = await _active_session(db_session, account.id)
        await ledger.abandon_session(db_session, session.id, now=NOW)
        with pytest.raises(InvalidSessionState):
            await ledger.finalize_session(db_session, session.id, 60, now=NOW)


class TestAbandon:
    @pytest.mark.asyncio
    async def test_abandon_keeps_consumed_credit(self, db_session, make_account, catalog):
        account = await make_account(trial_credits_remaining=1)
        session = await ledger.issue_session(db_session, account.id, "cold_call_basics", now=NOW)

        result = await ledger.abandon_session(db_session, session.id, now=NOW)

        assert result.changed is True
        assert result.status == SessionStatus.ABANDONED
        account = await _reload(db_session, Account, account.id)
        assert account.trial_credits_remaining == 0

    @pytest.mark.asyncio
    async def test_abandon_twice(self, db_session, make_account, catalog):
        account = await make_account()
        session = await ledger.issue_session(db_session, account.id, "cold_call_basics", now=NOW)
        await ledger.abandon_session(db_session, session.id, now=NOW)
        again = await ledger.abandon_session(db_session, session.id, now=NOW)
        assert again.changed is False
        assert again.status == SessionStatus.ABANDONED

    @pytest.mark.asyncio
    async def test_abandon_with_max_age(self, db_session, make_account, catalog):
        account = await make_account()
        old = await ledger.issue_session(db_session, account.id, "cold_call_basics", now=NOW - timedelta(hours=2))
        recent = await ledger.issue_session(db_session, account.id, "gatekeeper", now=NOW - timedelta(minutes=10))

        with pytest.raises(SessionNotFound):
            await ledger.abandon_session(db_session, old.id, now=NOW, max_age=timedelta(hours=1))
        result = await ledger.abandon_session(db_session, recent.id, now=NOW, max_age=timedelta(hours=1))

        assert result.changed is True
        assert (await ledger.get_session_record(db_session, old.id)).status == SessionStatus.PENDING

    @pytest.mark.asyncio
    async def test_abandon_completed_is_noop(self, db_session, make_account, catalog):
        account = await make_account()
        session = await _active_session(db_session, account.id)
        await ledger.finalize_session(db_session, session.id, 60, now=NOW)

        result = await ledger.abandon_session(db_session, session.id, now=NOW)

        assert result.changed is False
        assert result.status == SessionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_finalize_and_abandon_race(self, session_factory, make_account, catalog):
        account = await make_account(plan="paid", subscription_status="active", tokens_remaining=1000)
        async with session_factory() as db:
            session = await _active_session(db, account.id, "cfo_boss")
        session_id = session.id

        async def _finalize():
            async with session_factory() as db:
                return await ledger.finalize_session(db, session_id, 60, now=NOW)

        async def _abandon():
            async with session_factory() as db:
                return await ledger.abandon_session(db, session_id, now=NOW)

        fin, ab = await asyncio.gather(_finalize(), _abandon(), return_exceptions=True)

        async with session_factory() as db:
            final = await ledger.get_session_record(db, session_id)
            tokens = (await db.get(Account, account.id)).tokens_remaining

        if final.status == SessionStatus.COMPLETED:
            assert ab.changed is False
            assert tokens == 800
        else:
            assert final.status == SessionStatus.ABANDONED
            assert tokens == 1000
            # Either finalize saw the abandoned session up front, or it lost the update and did nothing.
            if not isinstance(fin, InvalidSessionState):
                assert fin.status == SessionStatus.ABANDONED
                assert fin.tokens_charged == 0

    @pytest.mark.asyncio
    async def test_finalize_losing_update_to_abandon_is_noop(self, session_factory, make_account, catalog):
        account = await make_account(plan="paid", subscription_status="active", tokens_remaining=1000)
        async with session_factory() as db:
            session_id = (await _active_session(db, account.id, "cfo_boss")).id

        read_session = ledger.get_session_record
        calls = {"n": 0}

        async def _read_then_abandon(db, sid, account_id=None):
            calls["n"] += 1
            record = await read_session(db, sid, account_id)
            if calls["n"] == 1:
                async with session_factory() as other:
                    await ledger.abandon_session(other, sid, now=NOW)
            return record

        async with session_factory() as db:
            with patch.object(ledger, "get_session_record", _read_then_abandon):
                result = await ledger.finalize_session(db, session_id, 60, now=NOW)

        assert result.status == SessionStatus.ABANDONED
        assert result.already_finalized is False
        assert result.tokens_charged == 0
        assert result.billed_seconds == 0
        async with session_factory() as db:
            assert (await db.get(Account, account.id)).tokens_remaining == 1000
            assert (await read_session(db, session_id)).status == SessionStatus.ABANDONED

    @pytest.mark.asyncio
    async def test_abandon_stale_sessions(self, db_session, make_account, catalog):
        account = await make_account()
        stale = await ledger.issue_session(db_session, account.id, "cold_call_basics", now=NOW - timedelta(hours=2))
        fresh = await ledger.issue_session(db_session, account.id, "gatekeeper", now=NOW)
        done = await _active_session(db_session, account.id, now=NOW - timedelta(hours=3))
        await ledger.finalize_session(db_session, done.id, 60, now=NOW - timedelta(hours=3))

        count = await ledger.abandon_stale_sessions(db_session, timedelta(hours=1), now=NOW)

        assert count == 1
        assert (await ledger.get_session_record(db_session, stale.id)).status == SessionStatus.ABANDONED
        assert (await ledger.get_session_record(db_session, fresh.id)).status == SessionStatus.PENDING
        assert (await ledger.get_session_record(db_session, done.id)).status == SessionStatus.COMPLETED


def test_tokens_for_duration_rounds_up():
    assert ledger.tokens_for_duration(1, 200) == 4
    assert ledger.tokens_for_duration(60, 200) == 200
    assert ledger.tokens_for_duration(0, 200) == 0
