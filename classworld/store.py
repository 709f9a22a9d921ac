"""
Classroom World - Store Interface
Persistence contract shared by the Postgres and in-memory stores.

Implementations must provide:
- uniqueness on (user_id, classroom_id), (state_id, image_index),
  (state_id, reward_type, reward_key), (state_id, event_day) and
  (state_id, week_start);
- an atomic xp increment and an atomic track-point rollover;
- a serialized check-then-insert for capped or single-instance ledger rows.
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime, date
from typing import Optional, List, Dict, Any, Tuple

from .models import WorldState, XpEvent, DailyEvent, DailyEventStatus, WeeklyResult


def metadata_text(value: Any) -> Optional[str]:
    """A metadata value as jsonb ``->>`` renders it; None for a missing key."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return json.dumps(value)


class WorldStore(ABC):

    # ============================================
    # WORLD STATES
    # ============================================

    @abstractmethod
    async def fetch_state(self, user_id: str, classroom_id: str) -> Optional[WorldState]:
        ...

    @abstractmethod
    async def fetch_state_by_id(self, state_id: int) -> Optional[WorldState]:
        ...

    @abstractmethod
    async def insert_state(
        self,
        user_id: str,
        classroom_id: str,
        next_daily_spawn_at: Optional[datetime],
        next_weekly_eval_at: Optional[datetime],
        base_image: int = 0
    ) -> WorldState:
        """Create a state and its base unlock; DuplicateRecordError if one exists."""

    @abstractmethod
    async def update_state(self, state_id: int, **fields: Any) -> Optional[WorldState]:
        """Set plain fields. Never used for xp or track points."""

    @abstractmethod
    async def increment_xp(self, state_id: int, amount: int) -> int:
        """Atomically add ``amount`` to xp and return the new total."""

    @abstractmethod
    async def add_track_points(self, state_id: int, points: int, per_level: int) -> Tuple[int, int]:
        """Atomically add track points with rollover; returns (level, points)."""

    @abstractmethod
    async def fetch_due_daily(self, now: datetime, limit: int) -> List[WorldState]:
        ...

    @abstractmethod
    async def fetch_due_weekly(self, now: datetime, limit: int) -> List[WorldState]:
        ...

    # ============================================
    # UNLOCKS
    # ============================================

    @abstractmethod
    async def fetch_unlocks(self, state_id: int) -> List[int]:
        ...

    @abstractmethod
    async def insert_unlocks(self, state_id: int, indices: List[int]) -> List[int]:
        """Insert, skipping owned indices; returns the ones actually added."""

    # ============================================
    # XP LEDGER
    # ============================================

    @abstractmethod
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
        """
        Append a ledger row and return the amount recorded.

        With ``daily_cap`` the amount is clamped to what remains of the cap
        for ``source`` since ``since``; with ``unique_key`` an existing row
        for the same source and metadata value blocks the insert. Blocked
        inserts write nothing and return 0.
        """

    @abstractmethod
    async def sum_xp_since(self, state_id: int, source: str, since: datetime) -> int:
        ...

    @abstractmethod
    async def fetch_xp_events(self, state_id: int, source: Optional[str] = None) -> List[XpEvent]:
        ...

    # ============================================
    # REWARD GRANTS
    # ============================================

    @abstractmethod
    async def insert_reward_grant(
        self,
        state_id: int,
        reward_type: str,
        reward_key: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        """False when the (state, type, key) triple already exists."""

    # ============================================
    # DAILY EVENTS
    # ============================================

    @abstractmethod
    async def fetch_daily_event(
        self,
        state_id: int,
        event_day: date,
        status: Optional[DailyEventStatus] = None
    ) -> Optional[DailyEvent]:
        ...

    @abstractmethod
    async def insert_daily_event(
        self,
        state_id: int,
        event_day: date,
        event_key: str,
        claimable_until: datetime
    ) -> Optional[DailyEvent]:
        """None when the state already has an event for that day."""

    @abstractmethod
    async def transition_daily_event(
        self,
        event_id: int,
        from_status: DailyEventStatus,
        to_status: DailyEventStatus,
        claimed_at: Optional[datetime] = None
    ) -> bool:
        """Conditional status change; False when the row is no longer in ``from_status``."""

    @abstractmethod
    async def expire_stale_daily_events(self, before_day: date, limit: int) -> int:
        ...

    @abstractmethod
    async def fetch_daily_events_between(self, state_id: int, start: date, end: date) -> List[DailyEvent]:
        ...

    # ============================================
    # WEEKLY RESULTS
    # ============================================

    @abstractmethod
    async def fetch_weekly_result(self, state_id: int, week_start: date) -> Optional[WeeklyResult]:
        ...

    @abstractmethod
    async def insert_weekly_result(self, result: WeeklyResult) -> Optional[WeeklyResult]:
        """None when a result for (state, week_start) already exists."""

    @abstractmethod
    async def fetch_latest_weekly_result(self, state_id: int) -> Optional[WeeklyResult]:
        ...

    @abstractmethod
    async def fetch_recent_weekly_event_keys(self, state_id: int, limit: int) -> List[Optional[str]]:
        """Event keys of the latest results, newest first (None for weeks without one)."""
