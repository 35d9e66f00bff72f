"""Pydantic request/response models for practice session endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class IssueSessionRequest(BaseModel):
    content_id: str = Field(min_length=1, max_length=64)


class SessionResponse(BaseModel):
    session_id: str
    content_id: str
    status: str
    plan: str
    max_duration_seconds: int
    created_at: datetime


class AccessTokenResponse(BaseModel):
    session_id: str
    access_token: str
    expires_at: datetime
    max_duration_seconds: int


class RedeemRequest(BaseModel):
    access_token: str = Field(min_length=1)


class RedeemResponse(BaseModel):
    session_id: str
    content_id: str
    max_duration_seconds: int


class FinalizeRequest(BaseModel):
    duration_seconds: int = Field(ge=0)


class FinalizeResponse(BaseModel):
    session_id: str
    status: str
    billed_seconds: int
    tokens_charged: int
    is_overage: bool
    overage_charge_cents: int
    already_finalized: bool
    power_gained: int
    total_power: int
    streak: int
    multiplier: float
    tier_changed: bool
    tier: str
    belt: str
    badges_unlocked: list[str]
    progression_deferred: bool


class AbandonResponse(BaseModel):
    session_id: str
    status: str
    changed: bool
