"""Stripe checkout creation and webhook verification."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import stripe

from salesdojo.config import Settings, get_settings
from salesdojo.db.models import Account

logger = logging.getLogger(__name__)

PLAN_TYPES = ("trial", "paid")


class BillingNotConfigured(RuntimeError):
    """Stripe keys or price ids are missing from settings."""


@dataclass(frozen=True)
class StripeConfig:
    secret_key: str
    webhook_secret: str
    trial_price_id: str
    paid_price_id: str
    success_url: str
    cancel_url: str


def _get_stripe_config(settings: Settings | None = None) -> StripeConfig:
    """Load Stripe config from settings. Fails closed when keys are missing."""
    settings = settings or get_settings()
    base = settings.frontend_base_url.rstrip("/")
    return StripeConfig(
        secret_key=settings.stripe_secret_key,
        webhook_secret=settings.stripe_webhook_secret,
        trial_price_id=settings.stripe_trial_price_id,
        paid_price_id=settings.stripe_paid_price_id,
        success_url=f"{base}/plans?checkout=success",
        cancel_url=f"{base}/plans?checkout=cancel",
    )


class StripeService:
    def __init__(self, settings: Settings | None = None) -> None:
        cfg = _get_stripe_config(settings)
        if not cfg.secret_key:
            raise BillingNotConfigured("Stripe not configured (missing: stripe_secret_key)")
        stripe.api_key = cfg.secret_key
        self.cfg = cfg

    def _checkout_params(self, account: Account, plan_type: str) -> dict[str, Any]:
        if plan_type not in PLAN_TYPES:
            raise ValueError(f"Unknown plan type: {plan_type}")
        price_id = self.cfg.trial_price_id if plan_type == "trial" else self.cfg.paid_price_id
        if not price_id:
            raise BillingNotConfigured(f"Stripe not configured (missing: {plan_type} price id)")

        metadata = {"external_id": account.external_id, "plan_type": plan_type}
        params: dict[str, Any] = {
            # Trial packages are one-off payments; paid is a monthly subscription.
            "mode": "payment" if plan_type == "trial" else "subscription",
            "success_url": self.cfg.success_url,
            "cancel_url": self.cfg.cancel_url,
            "line_items": [{"price": price_id, "quantity": 1}],
            "client_reference_id": account.external_id,
            "metadata": metadata,
        }
        if plan_type == "paid":
            params["subscription_data"] = {"metadata": metadata}
        return params

    async def ensure_customer(self, account: Account) -> str:
        """Return the account's Stripe customer id, creating the customer on first checkout."""
        if account.payment_customer_ref:
            return account.payment_customer_ref
        customer = await asyncio.to_thread(
            stripe.Customer.create,
            email=account.email,
            metadata={"external_id": account.external_id},
        )
        return str(customer.id)

    async def create_checkout_session(self, account: Account, plan_type: str) -> str:
        params = self._checkout_params(account, plan_type)
        params["customer"] = await self.ensure_customer(account)
        session = await asyncio.to_thread(stripe.checkout.Session.create, **params)
        logger.info("checkout_created account_id=%s plan_type=%s", account.id, plan_type)
        return str(session.url)

    def construct_event(self, payload: bytes, sig_header: str) -> Any:  # noqa: ANN401
        if not self.cfg.webhook_secret:
            raise BillingNotConfigured("Stripe webhook secret not configured")
        return stripe.Webhook.construct_event(
            payload=payload,
            sig_header=sig_header,
            secret=self.cfg.webhook_secret,
        )


def get_stripe_service() -> StripeService:
    """FastAPI dependency; overridden in tests."""
    return StripeService()
