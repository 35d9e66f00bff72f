"""Power awarded for a completed practice session."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

BASE_POWER = 5
POWER_PER_MINUTE = 2


def base_power(duration_seconds: int) -> int:
    """5 for showing up plus 2 per full minute."""
    return BASE_POWER + POWER_PER_MINUTE * (max(duration_seconds, 0) // 60)


def power_gained(duration_seconds: int, multiplier: Decimal) -> int:
    raw = Decimal(base_power(duration_seconds)) * Decimal(multiplier)
    return int(raw.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
