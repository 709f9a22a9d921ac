"""
Classroom World - Time Windows
Timezone-correct date keys, wall-clock triggers and the trailing scoring week.

Every function takes an aware ``now`` and computes in the configured world
timezone. The host's local timezone is never consulted.
"""

from datetime import datetime, date, time, timedelta, timezone
from functools import lru_cache
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from .config import WorldConfig, get_world_config


# Day index epoch for deterministic daily catalog selection
EPOCH = date(1970, 1, 1)

# Upper bound on the forward scan for the weekly trigger
WEEKLY_SCAN_DAYS = 8


@lru_cache(maxsize=16)
def get_zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def _zone(config: Optional[WorldConfig]) -> ZoneInfo:
    return get_zone((config or get_world_config()).timezone)


def _require_aware(now: datetime) -> None:
    if now.tzinfo is None or now.utcoffset() is None:
        raise ValueError("now must be a timezone-aware datetime")


# ============================================
# DATE KEYS
# ============================================

def today(now: datetime, config: Optional[WorldConfig] = None) -> date:
    """Calendar date of ``now`` in the world timezone."""
    _require_aware(now)
    return now.astimezone(_zone(config)).date()


def today_string(now: datetime, config: Optional[WorldConfig] = None) -> str:
    """Date key (YYYY-MM-DD) of ``now`` in the world timezone."""
    return today(now, config).isoformat()


def tomorrow_of(day: date) -> date:
    return day + timedelta(days=1)


def yesterday_of(day: date) -> date:
    return day - timedelta(days=1)


def day_index(day: date) -> int:
    """Days since the fixed epoch."""
    return (day - EPOCH).days


# ============================================
# WALL CLOCK
# ============================================

def wall_clock(day: date, hour: int, minute: int, config: Optional[WorldConfig] = None) -> datetime:
    """Instant (UTC) of ``hour:minute`` on ``day`` in the world timezone."""
    local = datetime.combine(day, time(hour, minute), tzinfo=_zone(config))
    return local.astimezone(timezone.utc)


def start_of_day(day: date, config: Optional[WorldConfig] = None) -> datetime:
    """Local midnight at the start of ``day``, as a UTC instant."""
    return wall_clock(day, 0, 0, config)


def next_daily_trigger(now: datetime, config: Optional[WorldConfig] = None) -> datetime:
    """Next daily spawn instant strictly after ``now``."""
    cfg = config or get_world_config()
    current = today(now, cfg)
    spawn_today = wall_clock(current, cfg.daily_spawn_hour, cfg.daily_spawn_minute, cfg)
    if spawn_today > now:
        return spawn_today
    return wall_clock(tomorrow_of(current), cfg.daily_spawn_hour, cfg.daily_spawn_minute, cfg)


def daily_trigger_for_day(day: date, config: Optional[WorldConfig] = None) -> datetime:
    cfg = config or get_world_config()
    return wall_clock(day, cfg.daily_spawn_hour, cfg.daily_spawn_minute, cfg)


def next_weekly_trigger(now: datetime, config: Optional[WorldConfig] = None) -> datetime:
    """
    Next weekly evaluation instant strictly after ``now``.

    Scans forward one local day at a time, bounded to eight days; the
    bound always contains one full week so the fallback is unreachable
    for a valid weekday.
    """
    cfg = config or get_world_config()
    current = today(now, cfg)
    for offset in range(WEEKLY_SCAN_DAYS):
        day = current + timedelta(days=offset)
        if day.isoweekday() != cfg.weekly_eval_weekday:
            continue
        trigger = wall_clock(day, cfg.weekly_eval_hour, cfg.weekly_eval_minute, cfg)
        if trigger > now:
            return trigger
    fallback = current + timedelta(days=7)
    return wall_clock(fallback, cfg.weekly_eval_hour, cfg.weekly_eval_minute, cfg)


# ============================================
# WEEK WINDOW
# ============================================

def week_window(now: datetime, config: Optional[WorldConfig] = None) -> Tuple[date, date]:
    """
    Trailing seven-day window ``(start, end)``, both inclusive.

    ``end`` is the most recent week-end weekday on or before today
    (today itself when it is the week-end day).
    """
    cfg = config or get_world_config()
    current = today(now, cfg)
    days_since_end = (current.isoweekday() - cfg.week_end_weekday) % 7
    end = current - timedelta(days=days_since_end)
    start = end - timedelta(days=6)
    return start, end


def window_bounds(start: date, end: date, config: Optional[WorldConfig] = None) -> Tuple[datetime, datetime]:
    """Instants spanning ``[start 00:00, end+1 00:00)`` in the world timezone."""
    return start_of_day(start, config), start_of_day(tomorrow_of(end), config)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
