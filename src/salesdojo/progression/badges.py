"""Badge catalog and rule interpreter.

A badge rule is a small declarative tree:

    {"all": [{"stat": "total_sessions", "op": ">=", "value": 10}, ...]}
    {"any": [...]}

Leaves compare one entry of the stats mapping against a constant. Nodes may
nest. Unknown stats or operators raise ``BadgeRuleError``; the engine logs and
skips the badge.
"""

from __future__ import annotations

import operator
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping

OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    ">=": operator.ge,
    ">": operator.gt,
    "<=": operator.le,
    "<": operator.lt,
    "==": operator.eq,
}

# Keys every stats snapshot provides.
STAT_KEYS = frozenset({
    "total_sessions",
    "total_minutes",
    "current_streak",
    "longest_streak",
    "power",
    "sessions_today",
    "sessions_last_hour",
    "objection_success_rate",
    "closing_rate",
    "average_wpm",
    "average_score",
})


class BadgeRuleError(ValueError):
    """A badge rule references an unknown stat or operator, or is malformed."""


@dataclass(frozen=True)
class BadgeDefinition:
    slug: str
    name: str
    description: str
    category: str
    rarity: str
    rule: dict[str, Any]
    # Stat and target shown as "progress / total" on the badge card.
    progress_stat: str | None = None
    progress_total: int | None = None
    tags: tuple[str, ...] = field(default_factory=tuple)


def _at_least(stat: str, value: int | float) -> dict[str, Any]:
    return {"stat": stat, "op": ">=", "value": value}


BADGES: tuple[BadgeDefinition, ...] = (
    # Volume
    BadgeDefinition(
        "badge_5_calls", "First Steps", "Complete 5 practice calls",
        "volume", "common", {"all": [_at_least("total_sessions", 5)]},
        "total_sessions", 5,
    ),
    BadgeDefinition(
        "badge_10_calls", "Building Momentum", "Complete 10 practice calls",
        "volume", "common", {"all": [_at_least("total_sessions", 10)]},
        "total_sessions", 10,
    ),
    BadgeDefinition(
        "badge_25_calls", "Quarter Century", "Complete 25 practice calls",
        "volume", "uncommon", {"all": [_at_least("total_sessions", 25)]},
        "total_sessions", 25,
    ),
    BadgeDefinition(
        "badge_50_calls", "Halfway Master", "Complete 50 practice calls",
        "volume", "uncommon", {"all": [_at_least("total_sessions", 50)]},
        "total_sessions", 50,
    ),
    # Streaks
    BadgeDefinition(
        "badge_7_day_streak", "Week Warrior", "Practice 7 days in a row",
        "streak", "uncommon", {"all": [_at_least("current_streak", 7)]},
        "current_streak", 7,
    ),
    BadgeDefinition(
        "badge_14_day_streak", "Fortnight Fighter", "Practice 14 days in a row",
        "streak", "rare", {"all": [_at_least("current_streak", 14)]},
        "current_streak", 14,
    ),
    BadgeDefinition(
        "badge_30_day_streak", "Monthly Master", "Practice 30 days in a row",
        "streak", "rare", {"all": [_at_least("current_streak", 30)]},
        "current_streak", 30,
    ),
    # Intensity
    BadgeDefinition(
        "badge_speed_demon", "Speed Demon", "Complete 3 calls within an hour",
        "special", "uncommon", {"all": [_at_least("sessions_last_hour", 3)]},
        "sessions_last_hour", 3,
    ),
    BadgeDefinition(
        "badge_power_hour", "Power Hour", "Complete 10 calls in one day",
        "special", "epic", {"all": [_at_least("sessions_today", 10)]},
        "sessions_today", 10,
    ),
    # Skill
    BadgeDefinition(
        "badge_objection_70", "Objection Handler",
        "Reach a 70% objection handling success rate over at least 10 calls",
        "skill", "rare",
        {"all": [_at_least("objection_success_rate", 70), _at_least("total_sessions", 10)]},
    ),
    BadgeDefinition(
        "badge_closing_60", "Deal Closer",
        "Reach a 60% closing rate over at least 15 calls",
        "skill", "rare",
        {"all": [_at_least("closing_rate", 60), _at_least("total_sessions", 15)]},
    ),
    BadgeDefinition(
        "badge_fluency_wpm", "Smooth Talker",
        "Keep an average pace of 120-150 words per minute over at least 10 calls",
        "skill", "rare",
        {"all": [
            _at_least("average_wpm", 120),
            {"stat": "average_wpm", "op": "<=", "value": 150},
            _at_least("total_sessions", 10),
        ]},
    ),
)

BADGES_BY_SLUG: dict[str, BadgeDefinition] = {b.slug: b for b in BADGES}


def evaluate_rule(rule: Mapping[str, Any], stats: Mapping[str, Any]) -> bool:
    """Evaluate a rule tree against a stats mapping."""
    if "all" in rule:
        return all(evaluate_rule(child, stats) for child in _children(rule, "all"))
    if "any" in rule:
        return any(evaluate_rule(child, stats) for child in _children(rule, "any"))

    try:
        stat = rule["stat"]
        op_name = rule["op"]
        value = rule["value"]
    except KeyError as exc:
        raise BadgeRuleError(f"Malformed rule leaf: {dict(rule)!r}") from exc

    op = OPERATORS.get(op_name)
    if op is None:
        raise BadgeRuleError(f"Unknown operator {op_name!r}")
    if stat not in stats:
        raise BadgeRuleError(f"Unknown stat {stat!r}")
    return bool(op(stats[stat], value))


def _children(rule: Mapping[str, Any], key: str) -> list[Mapping[str, Any]]:
    children = rule[key]
    if not isinstance(children, (list, tuple)) or not children:
        raise BadgeRuleError(f"{key!r} needs a non-empty list of rules")
    return list(children)


def badge_progress(badge: BadgeDefinition, stats: Mapping[str, Any]) -> tuple[int | None, int | None]:
    """(progress, total) for display, capped at total."""
    if badge.progress_stat is None or badge.progress_total is None:
        return None, None
    current = int(stats.get(badge.progress_stat, 0))
    return min(current, badge.progress_total), badge.progress_total
