"""
Classroom World - In-Memory Store
Process-local WorldStore for local runs and tests.

Every method yields to the event loop before touching data so concurrent
callers interleave the way they would against a real database. Reads and
writes that must be atomic happen without an intervening await.
"""

import asyncio
import itertools
from collections import defaultdict
from datetime import datetime, date, timezone
from typing import Optional, List, Dict, Any, Tuple, Callable

from .errors import DuplicateRecordError
from .models import WorldState, XpEvent, DailyEvent, DailyEventStatus, WeeklyResult
from .scoring import roll_track_points
from .store import WorldStore, metadata_text


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryWorldStore(WorldStore):

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self.clock = clock or _utcnow
        self._ids = itertools.count(1)
        self.states: Dict[int, WorldState] = {}
        self.unlocks: Dict[int, set] = defaultdict(set)
        self.xp_events: List[XpEvent] = []
        self.reward_grants: Dict[Tuple[int, str, str], Optional[Dict[str, Any]]] = {}
        self.daily_events: Dict[int, DailyEvent] = {}
        self.weekly_results: Dict[Tuple[int, date], WeeklyResult] = {}
        self._ledger_locks: Dict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def _yield(self) -> None:
        await asyncio.sleep(0)

    # ============================================
    # WORLD STATES
    # ============================================

    async def fetch_state(self, user_id: str, classroom_id: str) -> Optional[WorldState]:
        await self._yield()
        for state in self.states.values():
            if state.user_id == user_id and state.classroom_id == classroom_id:
                return state.model_copy()
        return None

    async def fetch_state_by_id(self, state_id: int) -> Optional[WorldState]:
        await self._yield()
        state = self.states.get(state_id)
        return state.model_copy() if state else None

    async def insert_state(
        self,
        user_id: str,
        classroom_id: str,
        next_daily_spawn_at: Optional[datetime],
        next_weekly_eval_at: Optional[datetime],
        base_image: int = 0
    ) -> WorldState:
        await self._yield()
        for state in self.states.values():
            if state.user_id == user_id and state.classroom_id == classroom_id:
                raise DuplicateRecordError("world_states", (user_id, classroom_id))

        now = self.clock()
        state = WorldState(
            id=next(self._ids),
            user_id=user_id,
            classroom_id=classroom_id,
            selected_image=base_image,
            next_daily_spawn_at=next_daily_spawn_at,
            next_weekly_eval_at=next_weekly_eval_at,
            created_at=now,
            updated_at=now,
        )
        self.states[state.id] = state
        self.unlocks[state.id].add(base_image)
        return state.model_copy()

    async def update_state(self, state_id: int, **fields: Any) -> Optional[WorldState]:
        await self._yield()
        state = self.states.get(state_id)
        if state is None:
            return None
        updated = state.model_copy(update={**fields, "updated_at": self.clock()})
        self.states[state_id] = updated
        return updated.model_copy()

    async def increment_xp(self, state_id: int, amount: int) -> int:
        await self._yield()
        state = self.states[state_id]
        state.xp += amount
        state.updated_at = self.clock()
        return state.xp

    async def add_track_points(self, state_id: int, points: int, per_level: int) -> Tuple[int, int]:
        await self._yield()
        state = self.states[state_id]
        state.weekly_track_level, state.weekly_track_points = roll_track_points(
            state.weekly_track_level, state.weekly_track_points, points, per_level
        )
        return state.weekly_track_level, state.weekly_track_points

    async def fetch_due_daily(self, now: datetime, limit: int) -> List[WorldState]:
        await self._yield()
        due = [
            state.model_copy() for state in self.states.values()
            if state.next_daily_spawn_at is None or state.next_daily_spawn_at <= now
        ]
        return due[:limit]

    async def fetch_due_weekly(self, now: datetime, limit: int) -> List[WorldState]:
        await self._yield()
        due = [
            state.model_copy() for state in self.states.values()
            if state.next_weekly_eval_at is None or state.next_weekly_eval_at <= now
        ]
        return due[:limit]

    # ============================================
    # UNLOCKS
    # ============================================

    async def fetch_unlocks(self, state_id: int) -> List[int]:
        await self._yield()
        return sorted(self.unlocks[state_id])

    async def insert_unlocks(self, state_id: int, indices: List[int]) -> List[int]:
        await self._yield()
        owned = self.unlocks[state_id]
        added = [index for index in dict.fromkeys(indices) if index not in owned]
        owned.update(added)
        return added

    # ============================================
    # XP LEDGER
    # ============================================

    def _sum_since(self, state_id: int, source: str, since: datetime) -> int:
        return sum(
            event.amount for event in self.xp_events
            if event.state_id == state_id and event.source == source and event.created_at >= since
        )

    async def insert_xp_event(
        self,
        state_id: int,
        source: str,
        amount: int,
        metadata: Optional[Dict[str, Any]] = None,
        *,
        daily_cap: Optional[int] = None,
        since: Optional[datetime] = None,
        unique_key: Optional[str] = None
    ) -> int:
        async with self._ledger_locks[state_id]:
            await self._yield()
            if daily_cap is not None and since is not None:
                remaining = daily_cap - self._sum_since(state_id, source, since)
                if remaining <= 0:
                    return 0
                amount = min(amount, remaining)

            if unique_key is not None:
                value = metadata_text((metadata or {}).get(unique_key))
                for event in self.xp_events:
                    if (value is not None and event.state_id == state_id and event.source == source
                            and metadata_text((event.metadata or {}).get(unique_key)) == value):
                        return 0

            self.xp_events.append(XpEvent(
                id=next(self._ids),
                state_id=state_id,
                source=source,
                amount=amount,
                metadata=metadata,
                created_at=self.clock(),
            ))
            return amount

    async def sum_xp_since(self, state_id: int, source: str, since: datetime) -> int:
        await self._yield()
        return self._sum_since(state_id, source, since)

    async def fetch_xp_events(self, state_id: int, source: Optional[str] = None) -> List[XpEvent]:
        await self._yield()
        return [
            event for event in self.xp_events
            if event.state_id == state_id and (source is None or event.source == source)
        ]

    # ============================================
    # REWARD GRANTS
    # ============================================

    async def insert_reward_grant(
        self,
        state_id: int,
        reward_type: str,
        reward_key: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        await self._yield()
        key = (state_id, reward_type, reward_key)
        if key in self.reward_grants:
            return False
        self.reward_grants[key] = metadata
        return True

    # ============================================
    # DAILY EVENTS
    # ============================================

    async def fetch_daily_event(
        self,
        state_id: int,
        event_day: date,
        status: Optional[DailyEventStatus] = None
    ) -> Optional[DailyEvent]:
        await self._yield()
        for event in self.daily_events.values():
            if event.state_id == state_id and event.event_day == event_day:
                if status is None or event.status == status:
                    return event.model_copy()
        return None

    async def insert_daily_event(
        self,
        state_id: int,
        event_day: date,
        event_key: str,
        claimable_until: datetime
    ) -> Optional[DailyEvent]:
        await self._yield()
        for event in self.daily_events.values():
            if event.state_id == state_id and event.event_day == event_day:
                return None
        event = DailyEvent(
            id=next(self._ids),
            state_id=state_id,
            event_day=event_day,
            event_key=event_key,
            status=DailyEventStatus.CLAIMABLE,
            claimable_until=claimable_until,
            created_at=self.clock(),
        )
        self.daily_events[event.id] = event
        return event.model_copy()

    async def transition_daily_event(
        self,
        event_id: int,
        from_status: DailyEventStatus,
        to_status: DailyEventStatus,
        claimed_at: Optional[datetime] = None
    ) -> bool:
        await self._yield()
        event = self.daily_events.get(event_id)
        if event is None or event.status != from_status:
            return False
        event.status = to_status
        if claimed_at is not None:
            event.claimed_at = claimed_at
        return True

    async def expire_stale_daily_events(self, before_day: date, limit: int) -> int:
        await self._yield()
        stale = [
            event for event in self.daily_events.values()
            if event.status == DailyEventStatus.CLAIMABLE and event.event_day < before_day
        ][:limit]
        for event in stale:
            event.status = DailyEventStatus.EXPIRED
        return len(stale)

    async def fetch_daily_events_between(self, state_id: int, start: date, end: date) -> List[DailyEvent]:
        await self._yield()
        return sorted(
            (event.model_copy() for event in self.daily_events.values()
             if event.state_id == state_id and start <= event.event_day <= end),
            key=lambda event: event.event_day,
        )

    # ============================================
    # WEEKLY RESULTS
    # ============================================

    async def fetch_weekly_result(self, state_id: int, week_start: date) -> Optional[WeeklyResult]:
        await self._yield()
        result = self.weekly_results.get((state_id, week_start))
        return result.model_copy() if result else None

    async def insert_weekly_result(self, result: WeeklyResult) -> Optional[WeeklyResult]:
        await self._yield()
        key = (result.state_id, result.week_start)
        if key in self.weekly_results:
            return None
        stored = result.model_copy(update={"id": next(self._ids), "created_at": self.clock()})
        self.weekly_results[key] = stored
        return stored.model_copy()

    def _results_newest_first(self, state_id: int) -> List[WeeklyResult]:
        return sorted(
            (result for (owner, _), result in self.weekly_results.items() if owner == state_id),
            key=lambda result: result.week_start,
            reverse=True,
        )

    async def fetch_latest_weekly_result(self, state_id: int) -> Optional[WeeklyResult]:
        await self._yield()
        results = self._results_newest_first(state_id)
        return results[0].model_copy() if results else None

    async def fetch_recent_weekly_event_keys(self, state_id: int, limit: int) -> List[Optional[str]]:
        await self._yield()
        return [result.event_key for result in self._results_newest_first(state_id)[:limit]]
