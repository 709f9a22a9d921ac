"""Tests for weekly bucket scoring, tiers and narrative event selection."""

import random

import pytest

from classworld.rules import WEEKLY_EVENT_CATALOG
from classworld.scoring import (
    ScoringPolicy, score_attendance_ratio, score_on_time_ratio, score_care_ratio,
    summarize_buckets, resolve_weekly_tier, tier_rewards, roll_track_points,
    eligible_pool, filter_cooldowns, weighted_choice, pick_weekly_event_key,
)


def entry(key, weight=100, tier="baseline", era_min="seed", cooldown=0):
    return {"key": key, "tier": tier, "era_min": era_min, "weight": weight, "cooldown_weeks": cooldown}


# ============================================================================
# Curves
# ============================================================================


class TestCurves:

    @pytest.mark.parametrize("ratio,expected", [
        (1.0, 100), (0.9, 100), (0.89, 75), (0.75, 75), (0.5, 50), (0.25, 25), (0.24, 0),
    ])
    def test_attendance_curve(self, ratio, expected):
        assert score_attendance_ratio(ratio) == expected

    @pytest.mark.parametrize("ratio,expected", [
        (1.0, 100), (0.66, 67), (0.5, 33), (0.0, 0),
    ])
    def test_on_time_curve(self, ratio, expected):
        assert score_on_time_ratio(ratio) == expected

    @pytest.mark.parametrize("ratio,expected", [
        (0.85, 100), (0.6, 67), (0.3, 33), (0.29, 0),
    ])
    def test_care_curve(self, ratio, expected):
        assert score_care_ratio(ratio) == expected

    def test_missing_denominator_is_absent(self):
        assert ScoringPolicy().score("care", 0, 0) is None

    def test_injected_curve_is_clamped(self):
        policy = ScoringPolicy(attendance_curve=lambda ratio: 150)
        assert policy.score("attendance", 1, 2) == 100


# ============================================================================
# Aggregation and tiers
# ============================================================================


class TestAggregation:

    def test_all_buckets_full(self):
        summary = summarize_buckets({"attendance": 100, "assignment": 100, "care": 100})
        assert summary.weekly_pct == 100.0
        assert summary.earned_points == 10
        assert summary.available_points == 10
        assert summary.present_count == 3

    def test_absent_bucket_excluded_not_zero(self):
        summary = summarize_buckets({"attendance": 50, "assignment": 100, "care": None})
        assert summary.earned_points == 5
        assert summary.available_points == 7
        assert summary.weekly_pct == 71.43
        assert summary.present_count == 2

    def test_no_buckets_has_no_percentage(self):
        summary = summarize_buckets({"attendance": None, "assignment": None, "care": None})
        assert summary.weekly_pct is None
        assert summary.present_count == 0


class TestTiers:

    @pytest.mark.parametrize("pct,present,expected", [
        (100.0, 3, "special"),
        (75.0, 2, "special"),
        (100.0, 1, "nicer"),
        (74.99, 3, "nicer"),
        (40.0, 2, "nicer"),
        (39.9, 3, "baseline"),
        (None, 0, "baseline"),
    ])
    def test_resolve_tier(self, pct, present, expected):
        assert resolve_weekly_tier(pct, present) == expected

    def test_tier_rewards(self):
        assert tier_rewards("special", 3) == (20, 2)
        assert tier_rewards("nicer", 1) == (12, 1)
        assert tier_rewards("baseline", 2) == (5, 0)

    def test_unscored_week_earns_nothing(self):
        assert tier_rewards("baseline", 0) == (0, 0)

    def test_track_rollover(self):
        assert roll_track_points(0, 3, 2, 4) == (1, 1)
        assert roll_track_points(1, 0, 8, 4) == (3, 0)
        assert roll_track_points(2, 1, 1, 4) == (2, 2)


# ============================================================================
# Narrative selection
# ============================================================================


class TestEventSelection:

    def test_era_gates_pool(self):
        assert eligible_pool(WEEKLY_EVENT_CATALOG, "nicer", "seed") == []
        assert len(eligible_pool(WEEKLY_EVENT_CATALOG, "special", "village")) == 2
        assert len(eligible_pool(WEEKLY_EVENT_CATALOG, "special", "observatory")) == 4

    def test_cooldown_is_per_entry(self):
        pool = [entry("a", cooldown=1), entry("b", cooldown=2)]
        assert [e["key"] for e in filter_cooldowns(pool, ["x", "b"])] == ["a"]
        assert [e["key"] for e in filter_cooldowns(pool, ["a"])] == ["b"]
        assert [e["key"] for e in filter_cooldowns(pool, [None, "a", "b"])] == ["a", "b"]

    def test_weighted_choice_draw_boundaries(self):
        pool = [entry("A", weight=1), entry("B", weight=99)]
        assert weighted_choice(pool, 0.0)["key"] == "A"
        assert weighted_choice(pool, 0.005)["key"] == "A"
        assert weighted_choice(pool, 0.01)["key"] == "B"
        assert weighted_choice(pool, 0.999)["key"] == "B"

    def test_zero_weight_never_chosen(self):
        pool = [entry("A", weight=0), entry("B", weight=5)]
        assert weighted_choice(pool, 0.0)["key"] == "B"
        assert weighted_choice([entry("A", weight=0)], 0.5) is None

    def test_weighted_proportions(self):
        catalog = [entry("A", weight=1), entry("B", weight=99)]
        rng = random.Random(20250117)
        picks = [pick_weekly_event_key(catalog, "baseline", "seed", [], rng) for _ in range(10000)]
        share = picks.count("B") / len(picks)
        assert 0.985 <= share <= 0.995

    def test_falls_back_when_cooldown_empties_pool(self):
        catalog = [entry("only", cooldown=1)]
        assert pick_weekly_event_key(catalog, "baseline", "seed", ["only"], random.Random(1)) == "only"

    def test_cooldown_avoids_recent_key(self):
        catalog = [entry("a", cooldown=1), entry("b", cooldown=1)]
        rng = random.Random(3)
        for _ in range(50):
            assert pick_weekly_event_key(catalog, "baseline", "seed", ["a"], rng) == "b"

    def test_empty_pool_selects_nothing(self):
        assert pick_weekly_event_key(WEEKLY_EVENT_CATALOG, "special", "seed", [], random.Random(1)) is None
