"""
Classroom World - Daily Care Events
One claimable care event per state per local day.
"""

from datetime import datetime, date
from typing import Optional, List

from .config import WorldConfig, get_world_config
from .leveling import calculate_level
from .logger import logger
from .models import WorldState, DailyEvent, DailyEventStatus, ClaimResult
from .rules import DAILY_CARE_EVENT_KEYS
from .store import WorldStore
from .timewindow import today, tomorrow_of, start_of_day, daily_trigger_for_day, day_index, utcnow
from .world import get_or_create_state, grant_xp_to_state


log = logger.getChild("daily")


def care_event_key_for_day(day: date, catalog: Optional[List[str]] = None) -> str:
    """Same key for every state on a given day."""
    keys = DAILY_CARE_EVENT_KEYS if catalog is None else catalog
    return keys[abs(day_index(day)) % len(keys)]


async def spawn_if_missing(
    store: WorldStore,
    state: WorldState,
    now: datetime,
    config: Optional[WorldConfig] = None
) -> Optional[DailyEvent]:
    """
    Create today's care event unless one exists, then move the next spawn to tomorrow.

    Returns the created event, or None when today already had one.
    """
    cfg = config or get_world_config()
    current = today(now, cfg)
    tomorrow = tomorrow_of(current)

    event = await store.insert_daily_event(
        state.id,
        current,
        care_event_key_for_day(current),
        start_of_day(tomorrow, cfg),
    )
    await store.update_state(state.id, next_daily_spawn_at=daily_trigger_for_day(tomorrow, cfg))

    if event:
        log.info(f"Spawned {event.event_key} for state {state.id} on {current}")
    return event


async def claim_daily_care_event(
    store: WorldStore,
    user_id: str,
    classroom_id: str,
    *,
    now: Optional[datetime] = None,
    config: Optional[WorldConfig] = None
) -> ClaimResult:
    """
    Claim today's care event.

    The claimable -> claimed transition is conditional, so only one of any
    number of concurrent claims is granted XP.
    """
    cfg = config or get_world_config()
    now = now or utcnow()
    state = await get_or_create_state(store, user_id, classroom_id, now, cfg)
    nothing = ClaimResult(new_level=calculate_level(state.xp, cfg.xp_per_level))

    event = await store.fetch_daily_event(state.id, today(now, cfg), DailyEventStatus.CLAIMABLE)
    if event is None:
        return nothing

    if now > event.claimable_until:
        await store.transition_daily_event(event.id, DailyEventStatus.CLAIMABLE, DailyEventStatus.EXPIRED)
        log.debug(f"Daily event {event.id} expired before claim")
        return nothing

    claimed = await store.transition_daily_event(
        event.id, DailyEventStatus.CLAIMABLE, DailyEventStatus.CLAIMED, claimed_at=now
    )
    if not claimed:
        log.debug(f"Daily event {event.id} already claimed")
        return nothing

    grant = await grant_xp_to_state(
        store,
        state,
        "daily_care_claimed",
        {"event_id": event.id, "event_key": event.event_key},
        now=now,
        config=cfg,
    )
    log.info(f"State {state.id} claimed {event.event_key}")
    return ClaimResult(
        event=event.model_copy(update={"status": DailyEventStatus.CLAIMED, "claimed_at": now}),
        xp_awarded=grant.xp_awarded,
        new_level=grant.new_level,
        new_unlocks=grant.new_unlocks,
    )


async def expire_stale_events(
    store: WorldStore,
    now: datetime,
    config: Optional[WorldConfig] = None
) -> int:
    """Expire claimable events from days before today; returns rows transitioned."""
    cfg = config or get_world_config()
    expired = await store.expire_stale_daily_events(today(now, cfg), cfg.expire_batch_size)
    if expired:
        log.info(f"Expired {expired} stale daily events")
    return expired
