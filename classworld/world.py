"""
Classroom World - World State Operations
Get-or-create, XP grants, achievement batches, cosmetics, snapshots and
the event-driven producer helpers.

Ordering within every grant: ledger row, then the atomic xp increment,
then the unlock diff.
"""

from datetime import datetime, date
from typing import Optional, List, Dict, Any, Tuple

from .config import WorldConfig, get_world_config
from .errors import DuplicateRecordError, WorldValidationError
from .leveling import (
    calculate_level, calculate_level_progress, calculate_level_progress_percent,
    detect_new_unlocks, get_next_unlock_level, is_valid_image_index,
)
from .logger import logger
from .models import (
    WorldState, WorldView, WorldSnapshot, GrantResult,
    AchievementItem, AchievementGrant, AchievementsResult,
)
from .rules import (
    XP_SOURCES, ACHIEVEMENTS, BASE_IMAGE_INDEX,
    ATTENDANCE_REWARD_TYPE, ASSIGNMENT_ON_TIME_REWARD_TYPE, ASSIGNMENT_LATE_REWARD_TYPE,
    COMPANION_REWARD_TYPE, COMPANION_STREAK_DAYS,
    is_valid_xp_source, is_valid_achievement,
)
from .signals import ClassroomSignals
from .store import WorldStore
from .timewindow import (
    today, yesterday_of, start_of_day, next_daily_trigger, next_weekly_trigger, utcnow,
)


log = logger.getChild("world")


# ============================================
# STATE ACCESS
# ============================================

async def get_or_create_state(
    store: WorldStore,
    user_id: str,
    classroom_id: str,
    now: Optional[datetime] = None,
    config: Optional[WorldConfig] = None
) -> WorldState:
    """
    Fetch the world state for a student in a classroom, creating it on first access.

    A losing creation race re-reads once and returns the winner's row.
    """
    state = await store.fetch_state(user_id, classroom_id)
    if state:
        return state

    cfg = config or get_world_config()
    now = now or utcnow()
    try:
        state = await store.insert_state(
            user_id,
            classroom_id,
            next_daily_trigger(now, cfg),
            next_weekly_trigger(now, cfg),
            BASE_IMAGE_INDEX,
        )
        log.info(f"Created world state {state.id} for {user_id} in {classroom_id}")
        return state
    except DuplicateRecordError:
        log.debug(f"Concurrent creation for {user_id} in {classroom_id}, re-reading")

    state = await store.fetch_state(user_id, classroom_id)
    if state is None:
        raise LookupError(f"World state for {user_id} in {classroom_id} vanished after creation race")
    return state


def enrich_state(state: WorldState, unlocks: List[int], xp_per_level: int = 100) -> WorldView:
    level = calculate_level(state.xp, xp_per_level)
    return WorldView(
        **state.model_dump(),
        level=level,
        level_progress=calculate_level_progress(state.xp, xp_per_level),
        level_progress_percent=calculate_level_progress_percent(state.xp, xp_per_level),
        next_unlock_level=get_next_unlock_level(level),
        unlocks=sorted(unlocks),
    )


# ============================================
# XP
# ============================================

async def _apply_xp(
    store: WorldStore,
    state_id: int,
    amount: int,
    xp_per_level: int
) -> Tuple[int, List[int]]:
    """Atomic increment followed by the unlock diff; returns (new level, new unlocks)."""
    new_xp = await store.increment_xp(state_id, amount)
    new_level = calculate_level(new_xp, xp_per_level)
    owned = await store.fetch_unlocks(state_id)
    candidates = detect_new_unlocks(owned, new_level)
    added = await store.insert_unlocks(state_id, candidates) if candidates else []
    if added:
        log.info(f"World state {state_id} unlocked images {added} at level {new_level}")
    return new_level, added


async def grant_xp_to_state(
    store: WorldStore,
    state: WorldState,
    source: str,
    metadata: Optional[Dict[str, Any]] = None,
    *,
    amount: Optional[int] = None,
    now: Optional[datetime] = None,
    config: Optional[WorldConfig] = None
) -> GrantResult:
    if not is_valid_xp_source(source):
        raise WorldValidationError(f"Unknown xp source: {source}")

    cfg = config or get_world_config()
    now = now or utcnow()
    rule = XP_SOURCES[source]
    requested = rule["xp"] if amount is None else amount
    if requested <= 0:
        raise WorldValidationError(f"XP amount for {source} must be positive")

    unique_key = rule["unique_key"]
    if unique_key is not None and (metadata or {}).get(unique_key) is None:
        raise WorldValidationError(f"{source} requires metadata '{unique_key}'")

    daily_cap = rule["daily_cap"]
    awarded = await store.insert_xp_event(
        state.id,
        source,
        requested,
        metadata,
        daily_cap=daily_cap,
        since=start_of_day(today(now, cfg), cfg) if daily_cap is not None else None,
        unique_key=unique_key,
    )
    if awarded <= 0:
        log.debug(f"XP grant {source} for state {state.id} was a no-op")
        return GrantResult(
            granted=False,
            xp_awarded=0,
            new_level=calculate_level(state.xp, cfg.xp_per_level),
            source=source,
        )

    new_level, new_unlocks = await _apply_xp(store, state.id, awarded, cfg.xp_per_level)
    log.info(f"Granted {awarded} xp ({source}) to state {state.id}, level {new_level}")
    return GrantResult(
        granted=True,
        xp_awarded=awarded,
        new_level=new_level,
        new_unlocks=new_unlocks,
        source=source,
    )


async def grant_xp(
    store: WorldStore,
    user_id: str,
    classroom_id: str,
    source: str,
    metadata: Optional[Dict[str, Any]] = None,
    *,
    now: Optional[datetime] = None,
    config: Optional[WorldConfig] = None
) -> GrantResult:
    """Grant a catalog source's fixed XP, honouring its daily cap or single-instance key."""
    if not is_valid_xp_source(source):
        raise WorldValidationError(f"Unknown xp source: {source}")
    state = await get_or_create_state(store, user_id, classroom_id, now, config)
    return await grant_xp_to_state(store, state, source, metadata, now=now, config=config)


# ============================================
# ACHIEVEMENTS
# ============================================

async def grant_achievements(
    store: WorldStore,
    user_id: str,
    classroom_id: str,
    items: List[AchievementItem],
    *,
    now: Optional[datetime] = None,
    config: Optional[WorldConfig] = None
) -> AchievementsResult:
    """
    Grant a batch of achievements.

    Each item is guarded by its (achievement, reward key) record; items
    already granted are skipped. The XP of every newly recorded item is
    applied with a single increment.
    """
    unknown = sorted({item.achievement_id for item in items if not is_valid_achievement(item.achievement_id)})
    if unknown:
        raise WorldValidationError(f"Unknown achievements: {', '.join(unknown)}")

    cfg = config or get_world_config()
    state = await get_or_create_state(store, user_id, classroom_id, now, cfg)

    granted: List[AchievementGrant] = []
    total = 0
    for item in items:
        inserted = await store.insert_reward_grant(
            state.id, item.achievement_id, item.reward_key, item.metadata
        )
        if not inserted:
            continue
        definition = ACHIEVEMENTS[item.achievement_id]
        await store.insert_xp_event(
            state.id,
            item.achievement_id,
            definition["xp"],
            {"reward_key": item.reward_key, **(item.metadata or {})},
        )
        granted.append(AchievementGrant(
            achievement_id=item.achievement_id,
            label=definition["label"],
            xp=definition["xp"],
        ))
        total += definition["xp"]

    if total == 0:
        return AchievementsResult(new_level=calculate_level(state.xp, cfg.xp_per_level))

    new_level, new_unlocks = await _apply_xp(store, state.id, total, cfg.xp_per_level)
    log.info(f"Granted {len(granted)} achievements ({total} xp) to state {state.id}")
    return AchievementsResult(
        achievements=granted,
        total_xp_awarded=total,
        new_level=new_level,
        new_unlocks=new_unlocks,
    )


# ============================================
# SNAPSHOT & PREFERENCES
# ============================================

async def get_snapshot(
    store: WorldStore,
    user_id: str,
    classroom_id: str,
    *,
    now: Optional[datetime] = None,
    config: Optional[WorldConfig] = None
) -> WorldSnapshot:
    cfg = config or get_world_config()
    now = now or utcnow()
    state = await get_or_create_state(store, user_id, classroom_id, now, cfg)

    backfill = {}
    if state.next_daily_spawn_at is None:
        backfill["next_daily_spawn_at"] = next_daily_trigger(now, cfg)
    if state.next_weekly_eval_at is None:
        backfill["next_weekly_eval_at"] = next_weekly_trigger(now, cfg)
    if backfill:
        state = await store.update_state(state.id, **backfill) or state

    unlocks = await store.fetch_unlocks(state.id)
    daily_event = await store.fetch_daily_event(state.id, today(now, cfg))
    latest = await store.fetch_latest_weekly_result(state.id)
    return WorldSnapshot(
        world=enrich_state(state, unlocks, cfg.xp_per_level),
        daily_event=daily_event,
        latest_weekly_result=latest,
    )


async def set_overlay_enabled(
    store: WorldStore,
    user_id: str,
    classroom_id: str,
    enabled: bool,
    *,
    now: Optional[datetime] = None,
    config: Optional[WorldConfig] = None
) -> WorldSnapshot:
    state = await get_or_create_state(store, user_id, classroom_id, now, config)
    await store.update_state(state.id, overlay_enabled=enabled)
    return await get_snapshot(store, user_id, classroom_id, now=now, config=config)


async def select_image(
    store: WorldStore,
    user_id: str,
    classroom_id: str,
    image_index: int,
    *,
    now: Optional[datetime] = None,
    config: Optional[WorldConfig] = None
) -> WorldView:
    """Select an owned cosmetic image."""
    if not is_valid_image_index(image_index):
        raise WorldValidationError(f"Invalid image index: {image_index}")

    cfg = config or get_world_config()
    state = await get_or_create_state(store, user_id, classroom_id, now, cfg)
    unlocks = await store.fetch_unlocks(state.id)
    if image_index not in unlocks:
        raise WorldValidationError("Image not unlocked")

    state = await store.update_state(state.id, selected_image=image_index) or state
    return enrich_state(state, unlocks, cfg.xp_per_level)


# ============================================
# PRODUCER HELPERS
# ============================================

async def _guarded_grant(
    store: WorldStore,
    state: WorldState,
    reward_type: str,
    reward_key: str,
    source: str,
    metadata: Dict[str, Any],
    now: Optional[datetime],
    config: Optional[WorldConfig]
) -> GrantResult:
    cfg = config or get_world_config()
    inserted = await store.insert_reward_grant(state.id, reward_type, reward_key, metadata)
    if not inserted:
        log.debug(f"Reward {reward_type}/{reward_key} already granted to state {state.id}")
        return GrantResult(
            granted=False,
            new_level=calculate_level(state.xp, cfg.xp_per_level),
            source=source,
        )
    return await grant_xp_to_state(store, state, source, metadata, now=now, config=cfg)


async def award_attendance_for_date(
    store: WorldStore,
    user_id: str,
    classroom_id: str,
    day: date,
    *,
    now: Optional[datetime] = None,
    config: Optional[WorldConfig] = None
) -> GrantResult:
    state = await get_or_create_state(store, user_id, classroom_id, now, config)
    day_key = day.isoformat()
    return await _guarded_grant(
        store, state,
        ATTENDANCE_REWARD_TYPE, f"attendance:{day_key}",
        "attendance_present", {"date": day_key},
        now, config,
    )


async def award_assignment_submission(
    store: WorldStore,
    user_id: str,
    classroom_id: str,
    assignment_id: str,
    on_time: bool,
    *,
    now: Optional[datetime] = None,
    config: Optional[WorldConfig] = None
) -> GrantResult:
    state = await get_or_create_state(store, user_id, classroom_id, now, config)
    if on_time:
        reward_type, source = ASSIGNMENT_ON_TIME_REWARD_TYPE, "assignment_submitted_on_time"
    else:
        reward_type, source = ASSIGNMENT_LATE_REWARD_TYPE, "assignment_submitted_late"
    return await _guarded_grant(
        store, state,
        reward_type, f"assignment:{assignment_id}",
        source, {"assignment_id": assignment_id},
        now, config,
    )


def _iso_week_key(day: date) -> str:
    year, week, _ = day.isocalendar()
    return f"{year}-W{week:02d}"


def entry_achievement_items(class_days: List[date], attended: set, current: date) -> List[AchievementItem]:
    """
    Streak and full-week achievements implied by a classroom's class days.

    Streaks count consecutive attended class days and restart after ten,
    each run being its own cycle. A full week is an ISO week whose class
    days have all passed and were all attended.
    """
    items: List[AchievementItem] = []
    streak = 0
    cycle = 0
    for day in class_days:
        if day not in attended:
            streak = 0
            continue
        streak += 1
        if streak >= 3:
            items.append(AchievementItem(achievement_id="streak_3", reward_key=f"cycle:{cycle}"))
        if streak >= 5:
            items.append(AchievementItem(achievement_id="streak_5", reward_key=f"cycle:{cycle}"))
        if streak >= 10:
            items.append(AchievementItem(achievement_id="streak_10", reward_key=f"cycle:{cycle}"))
            cycle += 1
            streak = 0

    weeks: Dict[str, List[date]] = {}
    for day in class_days:
        weeks.setdefault(_iso_week_key(day), []).append(day)

    for week_key, days in weeks.items():
        if current < max(days):
            continue
        if all(day in attended for day in days):
            items.append(AchievementItem(achievement_id="full_week", reward_key=f"week:{week_key}"))

    return items


async def check_entry_achievements(
    store: WorldStore,
    signals: ClassroomSignals,
    user_id: str,
    classroom_id: str,
    *,
    now: Optional[datetime] = None,
    config: Optional[WorldConfig] = None
) -> AchievementsResult:
    cfg = config or get_world_config()
    now = now or utcnow()
    current = today(now, cfg)

    class_days = await signals.scheduled_class_days(classroom_id, None, current)
    attended = await signals.attended_days(user_id, classroom_id)
    items = entry_achievement_items(class_days, attended, current)
    if not items:
        state = await get_or_create_state(store, user_id, classroom_id, now, cfg)
        return AchievementsResult(new_level=calculate_level(state.xp, cfg.xp_per_level))
    return await grant_achievements(store, user_id, classroom_id, items, now=now, config=cfg)


async def process_login_streak(
    store: WorldStore,
    signals: ClassroomSignals,
    user_id: str,
    *,
    now: Optional[datetime] = None,
    config: Optional[WorldConfig] = None
) -> List[WorldState]:
    """
    Advance the login streak in every classroom the student is enrolled in.

    A login on the day after the previous one extends the streak, any
    other gap restarts it at one. Reaching three days unlocks the
    companion once.
    """
    cfg = config or get_world_config()
    now = now or utcnow()
    current = today(now, cfg)

    updated: List[WorldState] = []
    for classroom_id in await signals.enrolled_classrooms(user_id):
        state = await get_or_create_state(store, user_id, classroom_id, now, cfg)
        if state.last_login_day == current:
            updated.append(state)
            continue

        if state.last_login_day == yesterday_of(current):
            streak = state.streak_days + 1
        else:
            streak = 1
        state = await store.update_state(state.id, streak_days=streak, last_login_day=current) or state

        if streak >= COMPANION_STREAK_DAYS:
            inserted = await store.insert_reward_grant(
                state.id, COMPANION_REWARD_TYPE, "streak_3", {"streak_days": streak}
            )
            if inserted:
                log.info(f"Companion unlocked for state {state.id} on a {streak}-day streak")
        updated.append(state)

    return updated
