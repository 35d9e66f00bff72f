"""Pydantic response models for leaderboard endpoints."""

from __future__ import annotations

from pydantic import BaseModel


class LeaderboardEntry(BaseModel):
    rank: int
    account_id: int
    display_name: str
    power: int
    tier: str
    belt: str
    current_streak: int
    badges_earned: int
    is_current_user: bool = False


class LeaderboardResponse(BaseModel):
    entries: list[LeaderboardEntry]
    total: int


class MyRankResponse(BaseModel):
    rank: int
    power: int
    total: int
    context: list[LeaderboardEntry]
