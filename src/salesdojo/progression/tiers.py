"""Power tiers and belts.

These values MUST match the frontend tier table (7 tiers x 7 belts). Each
belt's max is the next belt's min minus one; the last entry is open-ended.
"""

from __future__ import annotations

from dataclasses import dataclass

BELTS: tuple[str, ...] = ("White", "Yellow", "Orange", "Green", "Blue", "Brown", "Black")

# (tier, colour, belt minimums White..Black)
_TIER_MINIMUMS: list[tuple[str, str, tuple[int, ...]]] = [
    ("Bronze", "#cd7f32", (0, 501, 751, 1001, 1251, 1501, 1751)),
    ("Silver", "#c0c0c0", (3501, 4501, 5501, 6501, 7501, 8501, 9501)),
    ("Gold", "#ffd700", (10001, 12501, 15001, 17501, 20001, 22501, 25001)),
    ("Platinum", "#e5e4e2", (42501, 48001, 53501, 59001, 64501, 70001, 75501)),
    ("Diamond", "#b9f2ff", (84001, 93001, 102001, 111001, 120001, 129001, 138001)),
    ("Sales Master", "#ff6b6b", (165001, 185001, 205001, 225001, 245001, 265001, 285001)),
    ("Sales Predator", "#8b00ff", (335001, 375001, 415001, 455001, 495001, 535001, 575001)),
]


@dataclass(frozen=True)
class ProgressionTier:
    tier: str
    belt: str
    color: str
    min_power: int
    max_power: int | None  # None: open-ended

    def contains(self, power: int) -> bool:
        return power >= self.min_power and (self.max_power is None or power <= self.max_power)


def _build_table() -> tuple[ProgressionTier, ...]:
    flat = [
        (tier, belt, color, minimum)
        for tier, color, minimums in _TIER_MINIMUMS
        for belt, minimum in zip(BELTS, minimums, strict=True)
    ]
    table = []
    for i, (tier, belt, color, minimum) in enumerate(flat):
        maximum = flat[i + 1][3] - 1 if i + 1 < len(flat) else None
        table.append(ProgressionTier(tier, belt, color, minimum, maximum))
    return tuple(table)


TIER_TABLE: tuple[ProgressionTier, ...] = _build_table()


def compute_tier(power: int) -> ProgressionTier:
    """Return the tier entry whose range contains `power`.

    Negative power is treated as 0; anything past the last bound clamps to the
    last entry.
    """
    power = max(power, 0)
    current = TIER_TABLE[0]
    for entry in TIER_TABLE:
        if power >= entry.min_power:
            current = entry
        else:
            break
    return current


def next_tier(power: int) -> ProgressionTier | None:
    """The entry after the one containing `power`, or None at the top."""
    current = compute_tier(power)
    idx = TIER_TABLE.index(current)
    if idx + 1 >= len(TIER_TABLE):
        return None
    return TIER_TABLE[idx + 1]


def tier_progress(power: int) -> dict:
    """Progress info for the profile card."""
    current = compute_tier(power)
    upcoming = next_tier(power)
    if upcoming is None:
        return {
            "tier": current.tier,
            "belt": current.belt,
            "color": current.color,
            "power_into_belt": power - current.min_power,
            "power_for_belt": None,
            "next_tier": None,
            "next_belt": None,
        }
    return {
        "tier": current.tier,
        "belt": current.belt,
        "color": current.color,
        "power_into_belt": power - current.min_power,
        "power_for_belt": upcoming.min_power - current.min_power,
        "next_tier": upcoming.tier,
        "next_belt": upcoming.belt,
    }
