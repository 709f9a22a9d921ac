"""
Classroom World - Reward Rules
Static catalogs: XP sources, achievements, cosmetic unlocks, weekly tiers and narrative events.
"""

from typing import Optional, List, Dict


# ============================================
# XP SOURCES
# ============================================

# source -> fixed xp, optional daily cap, optional single-instance metadata key
XP_SOURCES = {
    "daily_login": {
        "xp": 10,
        "daily_cap": 10,
        "unique_key": None,
    },
    "assignment_complete": {
        "xp": 15,
        "daily_cap": None,
        "unique_key": "assignment_id",
    },
    "weekly_goal": {
        "xp": 25,
        "daily_cap": None,
        "unique_key": "week",
    },
    "attendance_present": {
        "xp": 5,
        "daily_cap": None,
        "unique_key": "date",
    },
    "assignment_submitted_on_time": {
        "xp": 8,
        "daily_cap": None,
        "unique_key": "assignment_id",
    },
    "assignment_submitted_late": {
        "xp": 2,
        "daily_cap": None,
        "unique_key": "assignment_id",
    },
    "daily_care_claimed": {
        "xp": 3,
        "daily_cap": None,
        "unique_key": "event_id",
    },
    # Amount is supplied by the weekly evaluation
    "weekly_bonus": {
        "xp": 0,
        "daily_cap": None,
        "unique_key": "week_start",
    },
}


def is_valid_xp_source(source: str) -> bool:
    return source in XP_SOURCES


# ============================================
# ACHIEVEMENTS
# ============================================

ACHIEVEMENTS = {
    "streak_3": {"label": "3-Day Streak", "xp": 10},
    "streak_5": {"label": "5-Day Streak", "xp": 20},
    "streak_10": {"label": "10-Day Streak", "xp": 50},
    "full_week": {"label": "Full Week", "xp": 25},
}


def is_valid_achievement(achievement_id: str) -> bool:
    return achievement_id in ACHIEVEMENTS


# Reward types recorded by the producer helpers
ATTENDANCE_REWARD_TYPE = "world_attendance_present"
ASSIGNMENT_ON_TIME_REWARD_TYPE = "world_assignment_submitted_on_time"
ASSIGNMENT_LATE_REWARD_TYPE = "world_assignment_submitted_late"
COMPANION_REWARD_TYPE = "companion_unlocked"
COMPANION_STREAK_DAYS = 3


# ============================================
# COSMETIC UNLOCKS
# ============================================

# image index -> level at which it unlocks
UNLOCK_THRESHOLDS: Dict[int, int] = {index: index * 2 for index in range(11)}

BASE_IMAGE_INDEX = 0


# ============================================
# WEEKLY TIERS
# ============================================

TIER_ORDER = ["baseline", "nicer", "special"]

WEEKLY_BONUS_XP = {
    "baseline": 5,
    "nicer": 12,
    "special": 20,
}

WEEKLY_TRACK_POINTS = {
    "baseline": 0,
    "nicer": 1,
    "special": 2,
}

# Minimum weekly percentage for each tier above baseline
TIER_THRESHOLDS = {
    "special": 75.0,
    "nicer": 40.0,
}

# Relative weight of each bucket in the weekly score
BUCKET_WEIGHTS = {
    "attendance": 4,
    "assignment": 3,
    "care": 3,
}


# ============================================
# ERAS
# ============================================

# (minimum track level, era) ascending
ERA_THRESHOLDS = [
    (0, "seed"),
    (2, "garden"),
    (4, "village"),
    (6, "observatory"),
]

ERA_ORDER = [era for _, era in ERA_THRESHOLDS]


def era_for_track_level(track_level: int) -> str:
    era = ERA_ORDER[0]
    for min_level, name in ERA_THRESHOLDS:
        if track_level >= min_level:
            era = name
    return era


def era_rank(era: str) -> int:
    return ERA_ORDER.index(era)


# ============================================
# EVENT CATALOGS
# ============================================

# Order matters: today's event is picked by day index
DAILY_CARE_EVENT_KEYS: List[str] = [
    "daily_fill_water_bowl",
    "daily_tidy_mess",
    "daily_greet_companion",
]

WEEKLY_EVENT_CATALOG: List[Dict] = [
    {"key": "wk_baseline_garden_tidy", "tier": "baseline", "era_min": "seed", "weight": 100, "cooldown_weeks": 1},
    {"key": "wk_baseline_cozy_reading", "tier": "baseline", "era_min": "seed", "weight": 100, "cooldown_weeks": 1},
    {"key": "wk_baseline_morning_stretch", "tier": "baseline", "era_min": "seed", "weight": 100, "cooldown_weeks": 1},
    {"key": "wk_baseline_window_watch", "tier": "baseline", "era_min": "seed", "weight": 100, "cooldown_weeks": 1},

    {"key": "wk_nicer_lantern_evening", "tier": "nicer", "era_min": "garden", "weight": 100, "cooldown_weeks": 1},
    {"key": "wk_nicer_picnic_setup", "tier": "nicer", "era_min": "garden", "weight": 100, "cooldown_weeks": 1},
    {"key": "wk_nicer_rain_boots_day", "tier": "nicer", "era_min": "garden", "weight": 100, "cooldown_weeks": 1},
    {"key": "wk_nicer_library_corner", "tier": "nicer", "era_min": "garden", "weight": 100, "cooldown_weeks": 1},

    {"key": "wk_special_starlight_parade", "tier": "special", "era_min": "village", "weight": 100, "cooldown_weeks": 2},
    {"key": "wk_special_harvest_celebration", "tier": "special", "era_min": "village", "weight": 100, "cooldown_weeks": 2},
    {"key": "wk_special_sky_bridge_visit", "tier": "special", "era_min": "observatory", "weight": 100, "cooldown_weeks": 2},
    {"key": "wk_special_founders_feast", "tier": "special", "era_min": "observatory", "weight": 100, "cooldown_weeks": 2},
]


def max_cooldown_weeks(catalog: Optional[List[Dict]] = None) -> int:
    entries = WEEKLY_EVENT_CATALOG if catalog is None else catalog
    return max((entry.get("cooldown_weeks", 0) for entry in entries), default=0)
