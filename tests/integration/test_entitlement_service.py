"""ResolveEntitlement against stored account state and the content catalog."""

from __future__ import annotations

import pytest

from salesdojo.entitlements.service import resolve_account_entitlement
from salesdojo.errors import AccountNotFound


@pytest.mark.asyncio
async def test_trial_account_with_credit(db_session, make_account, catalog):
    account = await make_account(trial_credits_remaining=2)

    ent = await resolve_account_entitlement(db_session, account.id)

    assert ent.can_call is True
    assert ent.max_session_seconds == 90
    assert set(ent.unlocked_content_ids) == {"cold_call_basics", "gatekeeper"}
    assert ent.locked_content_ids == ("cfo_boss",)


@pytest.mark.asyncio
async def test_cancelled_subscription_without_tokens(db_session, make_account, catalog):
    account = await make_account(plan="paid", subscription_status="cancelled", tokens_remaining=0)

    ent = await resolve_account_entitlement(db_session, account.id)

    assert ent.plan == "paid"
    assert ent.can_call is False
    assert ent.is_overage is True
    assert ent.allows_content("cfo_boss")


@pytest.mark.asyncio
async def test_unknown_account(db_session):
    with pytest.raises(AccountNotFound):
        await resolve_account_entitlement(db_session, 424242)
