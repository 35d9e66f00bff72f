"""Billing event ledger: apply payment-provider events exactly once.

The event row is inserted and flushed before any account mutation, inside the
same transaction. A unique violation on ``billed_events.event_id`` means the
event was already applied and nothing else runs.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from salesdojo.clock import utcnow
from salesdojo.config import Settings, get_settings
from salesdojo.db.models import Account, BilledEvent
from salesdojo.errors import UnknownSubscriptionReference

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
INVOICE_PAID = "invoice.paid"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"

# Provider subscription status -> accounts.subscription_status. Unlisted values map to active.
_STATUS_MAP: dict[str, str] = {
    "active": "active",
    "past_due": "past_due",
    "canceled": "cancelled",
    "unpaid": "cancelled",
    "incomplete_expired": "cancelled",
}


class BillingEventOutcome(str, enum.Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class BillingEventResult:
    outcome: BillingEventOutcome
    event_id: str
    event_type: str
    account_id: int | None = None
    handled: bool = False


def map_subscription_status(provider_status: str | None) -> str:
    return _STATUS_MAP.get(provider_status or "", "active")


def _metadata(payload: Mapping[str, Any]) -> Mapping[str, Any]:
    return payload.get("metadata") or {}


def _account_ref(payload: Mapping[str, Any]) -> str | None:
    """Identity subject the checkout was created for."""
    ref = _metadata(payload).get("external_id") or payload.get("client_reference_id")
    return str(ref) if ref else None


async def _find_by_external_id(db: AsyncSession, external_id: str | None) -> Account | None:
    if not external_id:
        return None
    result = await db.execute(select(Account).where(Account.external_id == external_id))
    return result.scalar_one_or_none()


async def _find_by_subscription(db: AsyncSession, subscription_ref: str | None) -> Account | None:
    if not subscription_ref:
        return None
    result = await db.execute(select(Account).where(Account.subscription_ref == subscription_ref))
    return result.scalar_one_or_none()


async def _resolve_account(
    db: AsyncSession,
    event_id: str,
    external_id: str | None,
    subscription_ref: str | None,
) -> Account:
    account = await _find_by_external_id(db, external_id)
    if account is None:
        account = await _find_by_subscription(db, subscription_ref)
    if account is None:
        raise UnknownSubscriptionReference(event_id, external_id or subscription_ref)
    return account


async def _checkout_completed(
    db: AsyncSession, event_id: str, payload: Mapping[str, Any], now: datetime, settings: Settings,
) -> Account:
    subscription_ref = payload.get("subscription")
    account = await _resolve_account(db, event_id, _account_ref(payload), subscription_ref)
    plan_type = _metadata(payload).get("plan_type")
    customer_ref = payload.get("customer")

    if plan_type == "trial":
        await db.execute(
            update(Account)
            .where(Account.id == account.id)
            .values(
                plan="trial",
                trial_purchase_count=case(
                    (Account.trial_purchase_count < settings.max_trial_purchases, Account.trial_purchase_count + 1),
                    else_=Account.trial_purchase_count,
                ),
                trial_credits_remaining=Account.trial_credits_remaining + settings.trial_credit_grant,
                payment_customer_ref=customer_ref or Account.payment_customer_ref,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        logger.info("trial_package_applied account_id=%s event_id=%s", account.id, event_id)
    elif plan_type == "paid":
        await db.execute(
            update(Account)
            .where(Account.id == account.id)
            .values(
                plan="paid",
                subscription_status="active",
                subscription_ref=subscription_ref or Account.subscription_ref,
                payment_customer_ref=customer_ref or Account.payment_customer_ref,
                tokens_remaining=settings.monthly_token_allotment,
                billing_cycle_start=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        logger.info("subscription_activated account_id=%s event_id=%s", account.id, event_id)
    else:
        logger.warning("checkout_without_plan_type account_id=%s event_id=%s", account.id, event_id)
    return account


async def _invoice_paid(
    db: AsyncSession, event_id: str, payload: Mapping[str, Any], now: datetime, settings: Settings,
) -> Account:
    subscription_ref = payload.get("subscription")
    account = await _resolve_account(db, event_id, _account_ref(payload), subscription_ref)
    await db.execute(
        update(Account)
        .where(Account.id == account.id)
        .values(
            tokens_remaining=settings.monthly_token_allotment,
            billing_cycle_start=now,
            subscription_status="active",
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    logger.info("billing_cycle_renewed account_id=%s event_id=%s", account.id, event_id)
    return account


async def _subscription_updated(
    db: AsyncSession, event_id: str, payload: Mapping[str, Any], now: datetime, settings: Settings,
) -> Account:
    account = await _resolve_account(db, event_id, _account_ref(payload), payload.get("id"))
    status = map_subscription_status(payload.get("status"))
    await db.execute(
        update(Account)
        .where(Account.id == account.id)
        .values(subscription_status=status, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    logger.info("subscription_status_changed account_id=%s status=%s event_id=%s", account.id, status, event_id)
    return account


async def _subscription_deleted(
    db: AsyncSession, event_id: str, payload: Mapping[str, Any], now: datetime, settings: Settings,
) -> Account:
    account = await _resolve_account(db, event_id, _account_ref(payload), payload.get("id"))
    await db.execute(
        update(Account)
        .where(Account.id == account.id)
        .values(subscription_status="cancelled", plan="trial", updated_at=now)
        .execution_options(synchronize_session=False)
    )
    logger.info("subscription_cancelled account_id=%s event_id=%s", account.id, event_id)
    return account


_HANDLERS = {
    CHECKOUT_COMPLETED: _checkout_completed,
    INVOICE_PAID: _invoice_paid,
    SUBSCRIPTION_UPDATED: _subscription_updated,
    SUBSCRIPTION_DELETED: _subscription_deleted,
}


async def apply_billing_event(
    db: AsyncSession,
    event_id: str,
    event_type: str,
    payload: Mapping[str, Any],
    now: datetime | None = None,
    settings: Settings | None = None,
) -> BillingEventResult:
    """Record the event, then apply its account mutation, in one transaction.

    Returns a ``duplicate`` result when the event id was seen before. Events
    that cannot be mapped to an account, and event types with no handler, are
    still recorded so redelivery stops.
    """
    now = now or utcnow()
    settings = settings or get_settings()

    db.add(BilledEvent(event_id=event_id, event_type=event_type, processed_at=now))
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        logger.info("billing_event_duplicate event_id=%s event_type=%s", event_id, event_type)
        return BillingEventResult(BillingEventOutcome.DUPLICATE, event_id, event_type)

    handler = _HANDLERS.get(event_type)
    if handler is None:
        await db.commit()
        logger.info("billing_event_ignored event_id=%s event_type=%s", event_id, event_type)
        return BillingEventResult(BillingEventOutcome.APPLIED, event_id, event_type)

    try:
        account = await handler(db, event_id, payload, now, settings)
    except UnknownSubscriptionReference as exc:
        await db.commit()
        logger.error("billing_event_unmatched event_id=%s event_type=%s reference=%s", event_id, event_type, exc.reference)
        return BillingEventResult(BillingEventOutcome.APPLIED, event_id, event_type)

    account_id = account.id
    await db.commit()
    return BillingEventResult(BillingEventOutcome.APPLIED, event_id, event_type, account_id=account_id, handled=True)
