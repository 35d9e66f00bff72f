"""Tier table tests: 7 tiers x 7 belts, total and non-overlapping."""

import pytest

from salesdojo.progression.tiers import BELTS, TIER_TABLE, compute_tier, next_tier, tier_progress


class TestTierTable:
    def test_has_49_entries(self):
        assert len(TIER_TABLE) == 49

    def test_ranges_are_contiguous(self):
        for current, following in zip(TIER_TABLE, TIER_TABLE[1:]):
            assert current.max_power == following.min_power - 1

    def test_first_starts_at_zero_last_is_open(self):
        assert TIER_TABLE[0].min_power == 0
        assert TIER_TABLE[-1].max_power is None

    def test_belt_order_within_tier(self):
        assert [t.belt for t in TIER_TABLE[:7]] == list(BELTS)

    @pytest.mark.parametrize("power", [0, 1, 3500, 3501, 999_999_999])
    def test_exactly_one_entry_matches(self, power):
        matches = [t for t in TIER_TABLE if t.contains(power)]
        assert len(matches) == 1
        assert compute_tier(power) == matches[0]


class TestComputeTier:
    @pytest.mark.parametrize(
        ("power", "tier", "belt"),
        [
            (0, "Bronze", "White"),
            (1, "Bronze", "White"),
            (500, "Bronze", "White"),
            (501, "Bronze", "Yellow"),
            (3500, "Bronze", "Black"),
            (3501, "Silver", "White"),
            (10_001, "Gold", "White"),
            (575_001, "Sales Predator", "Black"),
            (999_999_999, "Sales Predator", "Black"),
        ],
    )
    def test_lookup(self, power, tier, belt):
        entry = compute_tier(power)
        assert (entry.tier, entry.belt) == (tier, belt)

    def test_negative_power_clamps_to_first(self):
        assert compute_tier(-50) == TIER_TABLE[0]

    def test_bronze_black_upper_bound(self):
        assert compute_tier(3500).max_power == 3500


class TestProgress:
    def test_next_tier(self):
        assert next_tier(0).belt == "Yellow"
        assert next_tier(999_999_999) is None

    def test_progress_mid_belt(self):
        progress = tier_progress(600)
        assert progress["belt"] == "Yellow"
        assert progress["power_into_belt"] == 99
        assert progress["power_for_belt"] == 250
        assert progress["next_belt"] == "Orange"

    def test_progress_at_top(self):
        progress = tier_progress(600_000)
        assert progress["next_tier"] is None
        assert progress["power_for_belt"] is None
