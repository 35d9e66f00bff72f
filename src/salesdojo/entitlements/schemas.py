"""Entitlement API schemas."""

from __future__ import annotations

from pydantic import BaseModel


class ContentItemResponse(BaseModel):
    id: str
    name: str
    description: str
    tier_required: str
    is_boss: bool
    locked: bool


class EntitlementResponse(BaseModel):
    plan: str
    subscription_status: str | None
    can_call: bool
    is_overage: bool
    max_session_seconds: int
    trial_credits_remaining: int
    tokens_remaining: int
    trial_purchase_count: int
    can_purchase_another_trial_package: bool
    reason: str | None
    content: list[ContentItemResponse]
