"""Named rate-limit budgets per operation class."""

from __future__ import annotations

from typing import NamedTuple


class RateLimitPreset(NamedTuple):
    limit: int
    window_seconds: int


PRESETS: dict[str, RateLimitPreset] = {
    # Session issue and other operations that cost money downstream
    "expensive": RateLimitPreset(10, 60),
    "payment": RateLimitPreset(5, 60),
    "standard": RateLimitPreset(30, 60),
    "read": RateLimitPreset(60, 60),
    "webhook": RateLimitPreset(100, 60),
}


def get_preset(name: str) -> RateLimitPreset:
    try:
        return PRESETS[name]
    except KeyError:
        raise ValueError(f"Unknown rate limit preset: {name}") from None
