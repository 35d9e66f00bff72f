"""Billing API endpoints: checkout creation and the Stripe webhook."""

from __future__ import annotations

import json
import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from salesdojo.auth.dependencies import get_current_account
from salesdojo.billing.checkout import BillingNotConfigured, StripeService, get_stripe_service
from salesdojo.billing.ledger import apply_billing_event
from salesdojo.billing.schemas import CheckoutRequest, CheckoutResponse, WebhookResponse
from salesdojo.database import get_session
from salesdojo.db.models import Account
from salesdojo.entitlements.resolver import resolve_entitlement
from salesdojo.entitlements.service import plan_limits
from salesdojo.ratelimit.dependency import rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/billing", tags=["Billing"])


@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    dependencies=[Depends(rate_limit("checkout", "payment"))],
)
async def create_checkout(
    body: CheckoutRequest,
    account: Account = Depends(get_current_account),
    db: AsyncSession = Depends(get_session),
    service: StripeService = Depends(get_stripe_service),
) -> CheckoutResponse:
    """Start a Stripe checkout for a trial package or the monthly subscription."""
    if body.plan_type == "trial":
        ent = resolve_entitlement(account, (), plan_limits())
        if not ent.can_purchase_another_trial_package:
            raise HTTPException(status_code=400, detail="Trial package limit reached")

    if not account.payment_customer_ref:
        account.payment_customer_ref = await service.ensure_customer(account)
        await db.commit()

    url = await service.create_checkout_session(account, body.plan_type)
    return CheckoutResponse(checkout_url=url)


@router.post(
    "/webhook",
    response_model=WebhookResponse,
    dependencies=[Depends(rate_limit("webhook", "webhook"))],
)
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_session),
    service: StripeService = Depends(get_stripe_service),
) -> WebhookResponse:
    """Verify the Stripe signature and apply the event exactly once."""
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature:
        raise HTTPException(status_code=400, detail="Missing Stripe-Signature header")

    try:
        service.construct_event(payload, signature)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning("stripe_signature_invalid error=%s", e)
        raise HTTPException(status_code=400, detail="Invalid signature") from e
    except BillingNotConfigured as e:
        raise HTTPException(status_code=503, detail=str(e)) from e

    event = json.loads(payload)
    event_id = str(event.get("id") or "")
    event_type = str(event.get("type") or "")
    if not event_id:
        raise HTTPException(status_code=400, detail="Event has no id")

    obj = (event.get("data") or {}).get("object") or {}
    result = await apply_billing_event(db, event_id, event_type, obj)
    return WebhookResponse(outcome=result.outcome.value, event_id=event_id)
