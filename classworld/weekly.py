"""
Classroom World - Weekly Evaluation
Scores the trailing week from attendance, assignment and care signals,
pays the tier rewards and records one immutable result per week.
"""

import random
from datetime import datetime, date
from typing import Optional, Dict, Any

from .config import WorldConfig, get_world_config
from .logger import logger
from .models import WorldState, WeeklyResult, WeeklyTier, DailyEventStatus
from .rules import WEEKLY_EVENT_CATALOG, era_for_track_level, max_cooldown_weeks
from .scoring import (
    ScoringPolicy, summarize_buckets, resolve_weekly_tier, tier_rewards, pick_weekly_event_key,
)
from .signals import ClassroomSignals
from .store import WorldStore
from .timewindow import week_window, window_bounds, next_weekly_trigger
from .world import grant_xp_to_state


log = logger.getChild("weekly")


# ============================================
# SIGNALS
# ============================================

async def gather_week_counts(
    store: WorldStore,
    signals: ClassroomSignals,
    state: WorldState,
    start: date,
    end: date,
    config: Optional[WorldConfig] = None
) -> Dict[str, int]:
    """Raw numerators and denominators for the three buckets."""
    class_days = await signals.scheduled_class_days(state.classroom_id, start, end)
    attended = await signals.attended_days(state.user_id, state.classroom_id, start, end)

    start_at, end_at = window_bounds(start, end, config)
    due = await signals.due_assignments(state.classroom_id, start_at, end_at)
    due_at = {assignment.id: assignment.due_at for assignment in due}
    on_time = 0
    if due_at:
        for doc in await signals.submissions(state.user_id, list(due_at)):
            if not doc.is_submitted or doc.submitted_at is None:
                continue
            deadline = due_at.get(doc.assignment_id)
            if deadline is not None and doc.submitted_at <= deadline:
                on_time += 1

    care_events = await store.fetch_daily_events_between(state.id, start, end)

    return {
        "attended_days": len(set(class_days) & attended),
        "scheduled_days": len(class_days),
        "on_time_submissions": on_time,
        "due_assignments": len(due_at),
        "claimed_care_days": sum(1 for e in care_events if e.status == DailyEventStatus.CLAIMED),
        "eligible_care_days": len(care_events),
    }


# ============================================
# EVALUATION
# ============================================

async def evaluate_week(
    store: WorldStore,
    signals: ClassroomSignals,
    state: WorldState,
    now: datetime,
    *,
    policy: Optional[ScoringPolicy] = None,
    rng: Optional[random.Random] = None,
    config: Optional[WorldConfig] = None
) -> Optional[WeeklyResult]:
    """
    Evaluate the most recent completed week window for ``state``.

    Returns the written result, or None when the week had already been
    evaluated. The next evaluation is rescheduled either way.
    """
    cfg = config or get_world_config()
    policy = policy or ScoringPolicy(special_min_buckets=cfg.special_min_buckets)
    start, end = week_window(now, cfg)
    next_eval = next_weekly_trigger(now, cfg)

    if await store.fetch_weekly_result(state.id, start):
        await store.update_state(state.id, next_weekly_eval_at=next_eval)
        log.debug(f"Week {start} already evaluated for state {state.id}")
        return None

    counts = await gather_week_counts(store, signals, state, start, end, cfg)
    scores = {
        "attendance": policy.score("attendance", counts["attended_days"], counts["scheduled_days"]),
        "assignment": policy.score("assignment", counts["on_time_submissions"], counts["due_assignments"]),
        "care": policy.score("care", counts["claimed_care_days"], counts["eligible_care_days"]),
    }
    summary = summarize_buckets(scores, policy.weights)
    tier = resolve_weekly_tier(
        summary.weekly_pct, summary.present_count, policy.thresholds, policy.special_min_buckets
    )
    bonus_xp, track_points = tier_rewards(tier, summary.present_count)

    era = era_for_track_level(state.weekly_track_level)
    recent = await store.fetch_recent_weekly_event_keys(state.id, max_cooldown_weeks())
    event_key = pick_weekly_event_key(WEEKLY_EVENT_CATALOG, tier, era, recent, rng)

    details: Dict[str, Any] = {**counts, "era": era}
    stored = await store.insert_weekly_result(WeeklyResult(
        state_id=state.id,
        week_start=start,
        week_end=end,
        attendance_score=summary.scores["attendance"],
        assignment_score=summary.scores["assignment"],
        care_score=summary.scores["care"],
        earned_points=summary.earned_points,
        available_points=summary.available_points,
        weekly_pct=summary.weekly_pct,
        tier=WeeklyTier(tier),
        event_key=event_key,
        bonus_xp=bonus_xp,
        track_points_awarded=track_points,
        details=details,
    ))
    if stored is None:
        await store.update_state(state.id, next_weekly_eval_at=next_eval)
        log.debug(f"Week {start} for state {state.id} was evaluated concurrently")
        return None

    try:
        if bonus_xp > 0:
            await grant_xp_to_state(
                store,
                state,
                "weekly_bonus",
                {"week_start": start.isoformat(), "week_end": end.isoformat(), "tier": tier},
                amount=bonus_xp,
                now=now,
                config=cfg,
            )
        if track_points > 0:
            await store.add_track_points(state.id, track_points, cfg.track_points_per_level)
    except Exception:
        log.warning(f"Weekly result {stored.id} written but rewards were not fully applied")
        raise

    await store.update_state(state.id, next_weekly_eval_at=next_eval)
    log.info(
        f"Evaluated week {start}..{end} for state {state.id}: "
        f"{tier} ({summary.weekly_pct}%), +{bonus_xp} xp, +{track_points} track"
    )
    return stored
