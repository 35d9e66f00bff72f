"""Daily streak tracking and the streak power multiplier."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

# (minimum streak days, multiplier), highest first
STREAK_MULTIPLIERS: list[tuple[int, Decimal]] = [
    (365, Decimal("2.50")),
    (180, Decimal("1.50")),
    (30, Decimal("1.17")),
    (14, Decimal("1.15")),
]
BASE_MULTIPLIER = Decimal("1.00")


@dataclass(frozen=True)
class StreakUpdate:
    current: int
    longest: int
    last_activity_date: date
    multiplier: Decimal


def streak_multiplier(current_streak: int) -> Decimal:
    for minimum, multiplier in STREAK_MULTIPLIERS:
        if current_streak >= minimum:
            return multiplier
    return BASE_MULTIPLIER


def advance_streak(
    current: int,
    longest: int,
    last_activity: date | None,
    activity_date: date,
) -> StreakUpdate:
    """Apply one completed session on `activity_date` (a UTC calendar date).

    Same day keeps the streak, the next day extends it, and any larger gap
    (or first activity) restarts it at 1. An activity date earlier than the
    last recorded one leaves the streak untouched.
    """
    if last_activity is None:
        new_current = 1
        new_last = activity_date
    else:
        gap = (activity_date - last_activity).days
        if gap <= 0:
            new_current = max(current, 1)
            new_last = last_activity
        elif gap == 1:
            new_current = current + 1
            new_last = activity_date
        else:
            new_current = 1
            new_last = activity_date

    new_longest = max(longest, new_current)
    return StreakUpdate(
        current=new_current,
        longest=new_longest,
        last_activity_date=new_last,
        multiplier=streak_multiplier(new_current),
    )
