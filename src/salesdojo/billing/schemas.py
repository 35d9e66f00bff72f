"""Billing API schemas."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel


class CheckoutRequest(BaseModel):
    plan_type: Literal["trial", "paid"]


class CheckoutResponse(BaseModel):
    checkout_url: str


class WebhookResponse(BaseModel):
    received: bool = True
    outcome: str
    event_id: str
