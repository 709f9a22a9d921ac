"""
Classroom World - Weekly Scoring
Bucket curves, weekly percentage, tier resolution and narrative event selection.

All functions here are pure; the weekly engine feeds them counts it gathered
from the store and collaborators.
"""

import bisect
import random
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Callable, Sequence, Tuple

from .rules import (
    BUCKET_WEIGHTS, TIER_THRESHOLDS, WEEKLY_BONUS_XP, WEEKLY_TRACK_POINTS,
    era_rank,
)


BUCKETS = ("attendance", "assignment", "care")
MAX_BUCKET_SCORE = 100


# ============================================
# BUCKET CURVES
# ============================================

def _step_curve(steps: Sequence[Tuple[float, int]]) -> Callable[[float], int]:
    def curve(ratio: float) -> int:
        for threshold, score in steps:
            if ratio >= threshold:
                return score
        return 0
    return curve


score_attendance_ratio = _step_curve([(0.9, 100), (0.75, 75), (0.5, 50), (0.25, 25)])
score_on_time_ratio = _step_curve([(1.0, 100), (0.66, 67), (0.33, 33)])
score_care_ratio = _step_curve([(0.85, 100), (0.6, 67), (0.3, 33)])


@dataclass
class ScoringPolicy:
    """Injectable curves, weights and tier thresholds for the weekly engine."""
    attendance_curve: Callable[[float], int] = score_attendance_ratio
    assignment_curve: Callable[[float], int] = score_on_time_ratio
    care_curve: Callable[[float], int] = score_care_ratio
    weights: Dict[str, int] = field(default_factory=lambda: dict(BUCKET_WEIGHTS))
    thresholds: Dict[str, float] = field(default_factory=lambda: dict(TIER_THRESHOLDS))
    special_min_buckets: int = 2

    def score(self, bucket: str, numerator: int, denominator: int) -> Optional[int]:
        """Score for one bucket, or None when it has no denominator."""
        if denominator <= 0:
            return None
        curve = {
            "attendance": self.attendance_curve,
            "assignment": self.assignment_curve,
            "care": self.care_curve,
        }[bucket]
        raw = curve(numerator / denominator)
        return max(0, min(MAX_BUCKET_SCORE, int(raw)))


# ============================================
# AGGREGATION
# ============================================

@dataclass
class BucketSummary:
    scores: Dict[str, Optional[int]]
    earned_points: float
    available_points: float
    present_count: int
    weekly_pct: Optional[float]


def summarize_buckets(
    scores: Dict[str, Optional[int]],
    weights: Optional[Dict[str, int]] = None
) -> BucketSummary:
    """
    Weighted percentage over the present buckets.

    Absent buckets (None) are excluded from both numerator and
    denominator. With no present bucket the percentage is undefined.
    """
    table = BUCKET_WEIGHTS if weights is None else weights
    earned = 0.0
    available = 0.0
    present = 0
    for bucket in BUCKETS:
        score = scores.get(bucket)
        if score is None:
            continue
        weight = table.get(bucket, 1)
        earned += score * weight / MAX_BUCKET_SCORE
        available += weight
        present += 1

    weekly_pct = None if available == 0 else round(earned / available * 100, 2)
    return BucketSummary(
        scores={bucket: scores.get(bucket) for bucket in BUCKETS},
        earned_points=round(earned, 4),
        available_points=available,
        present_count=present,
        weekly_pct=weekly_pct,
    )


def resolve_weekly_tier(
    weekly_pct: Optional[float],
    present_count: int,
    thresholds: Optional[Dict[str, float]] = None,
    special_min_buckets: int = 2
) -> str:
    table = TIER_THRESHOLDS if thresholds is None else thresholds
    if weekly_pct is None or present_count == 0:
        return "baseline"
    if weekly_pct >= table["special"] and present_count >= special_min_buckets:
        return "special"
    if weekly_pct >= table["nicer"]:
        return "nicer"
    return "baseline"


def tier_rewards(tier: str, present_count: int) -> Tuple[int, int]:
    """(bonus xp, track points) for a tier; an unscored week earns nothing."""
    if present_count == 0:
        return 0, 0
    return WEEKLY_BONUS_XP[tier], WEEKLY_TRACK_POINTS[tier]


def roll_track_points(level: int, points: int, awarded: int, per_level: int) -> Tuple[int, int]:
    """New (track level, track points) after adding ``awarded`` points."""
    total = points + awarded
    return level + total // per_level, total % per_level


# ============================================
# NARRATIVE EVENT SELECTION
# ============================================

def eligible_pool(catalog: List[Dict], tier: str, era: str) -> List[Dict]:
    rank = era_rank(era)
    return [
        entry for entry in catalog
        if entry["tier"] == tier and era_rank(entry.get("era_min", "seed")) <= rank
    ]


def filter_cooldowns(pool: List[Dict], recent_keys: Sequence[Optional[str]]) -> List[Dict]:
    """
    Drop entries used within their own cooldown.

    ``recent_keys`` lists the event keys of past weeks, newest first; an
    entry with cooldown N is excluded when its key is among the first N.
    """
    return [
        entry for entry in pool
        if entry["key"] not in list(recent_keys)[:entry.get("cooldown_weeks", 0)]
    ]


def cumulative_weights(pool: List[Dict]) -> List[float]:
    totals = []
    running = 0.0
    for entry in pool:
        running += max(float(entry.get("weight", 0)), 0.0)
        totals.append(running)
    return totals


def weighted_choice(pool: List[Dict], draw: float) -> Optional[Dict]:
    """
    Pick from ``pool`` with a single uniform ``draw`` in [0, 1).

    Zero-weight entries are never picked; None when nothing has weight.
    """
    totals = cumulative_weights(pool)
    if not totals or totals[-1] <= 0:
        return None
    target = draw * totals[-1]
    index = bisect.bisect_right(totals, target)
    return pool[min(index, len(pool) - 1)]


def pick_weekly_event_key(
    catalog: List[Dict],
    tier: str,
    era: str,
    recent_keys: Sequence[Optional[str]],
    rng: Optional[random.Random] = None
) -> Optional[str]:
    pool = eligible_pool(catalog, tier, era)
    if not pool:
        return None
    filtered = filter_cooldowns(pool, recent_keys)
    draw = (rng or random).random()
    choice = weighted_choice(filtered, draw) if filtered else None
    if choice is None:
        choice = weighted_choice(pool, draw)
    return choice["key"] if choice else None
