"""
Account lookup and first-sight creation.

Accounts are created lazily the first time an identity-provider subject
calls the API. New accounts start on the trial plan with the signup grant.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from salesdojo.clock import utcnow
from salesdojo.config import get_settings
from salesdojo.db.models import Account
from salesdojo.errors import AccountNotFound

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


async def get_account(db: AsyncSession, account_id: int) -> Account:
    """Fetch an account by ID or raise AccountNotFound."""
    account = await db.get(Account, account_id)
    if account is None:
        raise AccountNotFound(account_id)
    return account


async def get_account_by_external_id(db: AsyncSession, external_id: str) -> Account | None:
    result = await db.execute(select(Account).where(Account.external_id == external_id))
    return result.scalar_one_or_none()


async def get_or_create_account(
    db: AsyncSession,
    external_id: str,
    email: str | None = None,
    display_name: str | None = None,
) -> tuple[Account, bool]:
    """
    Get the account for an identity subject, creating it on first sight.

    Returns:
        Tuple of (account, created) where created is True if a new account was made.
    """
    account = await get_account_by_external_id(db, external_id)
    if account is not None:
        return account, False

    settings = get_settings()
    account = Account(
        external_id=external_id,
        email=email,
        display_name=display_name,
        plan="trial",
        trial_credits_remaining=settings.signup_trial_credits,
        trial_purchase_count=settings.signup_trial_purchases,
        tokens_remaining=0,
        created_at=utcnow(),
    )
    db.add(account)
    try:
        await db.commit()
    except IntegrityError:
        # Concurrent first request for the same subject won the insert.
        await db.rollback()
        account = await get_account_by_external_id(db, external_id)
        if account is None:
            raise
        return account, False

    await db.refresh(account)
    logger.info("account_created", account_id=account.id, external_id=external_id)
    return account, True
