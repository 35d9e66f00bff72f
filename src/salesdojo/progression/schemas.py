"""Pydantic response models for progression endpoints."""

from __future__ import annotations

from datetime import date, datetime

from pydantic import BaseModel


class TierEntry(BaseModel):
    tier: str
    belt: str
    color: str
    min_power: int
    max_power: int | None


class AllTiersResponse(BaseModel):
    tiers: list[TierEntry]


class BadgeDefinitionResponse(BaseModel):
    slug: str
    name: str
    description: str
    category: str
    rarity: str
    progress_total: int | None = None


class AllBadgesResponse(BaseModel):
    badges: list[BadgeDefinitionResponse]


class EarnedBadgeResponse(BaseModel):
    slug: str
    name: str
    rarity: str
    earned_at: datetime
    progress: int | None = None
    total: int | None = None


class ProgressionResponse(BaseModel):
    power: int
    tier: str
    belt: str
    color: str
    power_into_belt: int
    power_for_belt: int | None
    next_tier: str | None
    next_belt: str | None
    current_streak: int
    longest_streak: int
    last_activity_date: date | None
    streak_multiplier: float
    total_sessions: int
    total_minutes: int
    badges_earned: list[EarnedBadgeResponse]
    total_badges_available: int
