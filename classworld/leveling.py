"""
Classroom World - Leveling
Pure functions from cumulative XP to level, progress and cosmetic unlocks.
"""

from typing import Optional, List, Iterable, Dict

from .rules import UNLOCK_THRESHOLDS


DEFAULT_XP_PER_LEVEL = 100


def calculate_level(xp: int, xp_per_level: int = DEFAULT_XP_PER_LEVEL) -> int:
    return max(xp, 0) // xp_per_level


def calculate_level_progress(xp: int, xp_per_level: int = DEFAULT_XP_PER_LEVEL) -> int:
    """XP earned inside the current level, always in [0, xp_per_level)."""
    return max(xp, 0) % xp_per_level


def calculate_level_progress_percent(xp: int, xp_per_level: int = DEFAULT_XP_PER_LEVEL) -> int:
    return calculate_level_progress(xp, xp_per_level) * 100 // xp_per_level


def get_unlocked_image_indices(
    level: int,
    thresholds: Optional[Dict[int, int]] = None
) -> List[int]:
    table = UNLOCK_THRESHOLDS if thresholds is None else thresholds
    return sorted(index for index, required in table.items() if required <= level)


def detect_new_unlocks(
    existing_indices: Iterable[int],
    new_level: int,
    thresholds: Optional[Dict[int, int]] = None
) -> List[int]:
    """Indices implied by ``new_level`` that are not already owned."""
    owned = set(existing_indices)
    return [index for index in get_unlocked_image_indices(new_level, thresholds) if index not in owned]


def get_next_unlock_level(
    level: int,
    thresholds: Optional[Dict[int, int]] = None
) -> Optional[int]:
    table = UNLOCK_THRESHOLDS if thresholds is None else thresholds
    upcoming = [required for required in table.values() if required > level]
    return min(upcoming) if upcoming else None


def is_valid_image_index(index: int, thresholds: Optional[Dict[int, int]] = None) -> bool:
    table = UNLOCK_THRESHOLDS if thresholds is None else thresholds
    return index in table
