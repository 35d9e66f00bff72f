"""Badge catalog and rule interpreter tests."""

import pytest

from salesdojo.progression.badges import (
    BADGES,
    BADGES_BY_SLUG,
    STAT_KEYS,
    BadgeRuleError,
    badge_progress,
    evaluate_rule,
)


def _stats(**overrides):
    stats = dict.fromkeys(STAT_KEYS, 0)
    stats.update(overrides)
    return stats


def _walk_leaves(rule):
    if "all" in rule or "any" in rule:
        for child in rule.get("all", rule.get("any")):
            yield from _walk_leaves(child)
    else:
        yield rule


class TestCatalog:
    def test_slugs_unique(self):
        assert len(BADGES_BY_SLUG) == len(BADGES) == 12

    @pytest.mark.parametrize("badge", BADGES, ids=lambda b: b.slug)
    def test_rules_reference_known_stats(self, badge):
        for leaf in _walk_leaves(badge.rule):
            assert leaf["stat"] in STAT_KEYS

    @pytest.mark.parametrize("badge", BADGES, ids=lambda b: b.slug)
    def test_not_earned_from_zero(self, badge):
        assert evaluate_rule(badge.rule, _stats()) is False


class TestEvaluateRule:
    def test_volume_thresholds(self):
        rule = BADGES_BY_SLUG["badge_5_calls"].rule
        assert evaluate_rule(rule, _stats(total_sessions=4)) is False
        assert evaluate_rule(rule, _stats(total_sessions=5)) is True

    def test_all_requires_every_child(self):
        rule = BADGES_BY_SLUG["badge_objection_70"].rule
        assert evaluate_rule(rule, _stats(objection_success_rate=75, total_sessions=9)) is False
        assert evaluate_rule(rule, _stats(objection_success_rate=75, total_sessions=10)) is True

    def test_wpm_band(self):
        rule = BADGES_BY_SLUG["badge_fluency_wpm"].rule
        assert evaluate_rule(rule, _stats(average_wpm=135, total_sessions=10)) is True
        assert evaluate_rule(rule, _stats(average_wpm=160, total_sessions=10)) is False

    def test_any(self):
        rule = {"any": [
            {"stat": "current_streak", "op": ">=", "value": 7},
            {"stat": "total_sessions", "op": ">", "value": 100},
        ]}
        assert evaluate_rule(rule, _stats(current_streak=7)) is True
        assert evaluate_rule(rule, _stats(total_sessions=100)) is False

    def test_nested(self):
        rule = {"all": [
            {"stat": "power", "op": ">=", "value": 10},
            {"any": [{"stat": "sessions_today", "op": "==", "value": 3}]},
        ]}
        assert evaluate_rule(rule, _stats(power=10, sessions_today=3)) is True

    def test_unknown_stat(self):
        with pytest.raises(BadgeRuleError, match="Unknown stat"):
            evaluate_rule({"stat": "revenue", "op": ">=", "value": 1}, _stats())

    def test_unknown_operator(self):
        with pytest.raises(BadgeRuleError, match="Unknown operator"):
            evaluate_rule({"stat": "power", "op": "!=", "value": 1}, _stats())

    def test_malformed_leaf(self):
        with pytest.raises(BadgeRuleError):
            evaluate_rule({"stat": "power"}, _stats())

    def test_empty_all(self):
        with pytest.raises(BadgeRuleError):
            evaluate_rule({"all": []}, _stats())


class TestProgress:
    def test_capped_at_total(self):
        badge = BADGES_BY_SLUG["badge_10_calls"]
        assert badge_progress(badge, _stats(total_sessions=4)) == (4, 10)
        assert badge_progress(badge, _stats(total_sessions=40)) == (10, 10)

    def test_skill_badges_have_no_progress(self):
        assert badge_progress(BADGES_BY_SLUG["badge_closing_60"], _stats()) == (None, None)
