"""
Classroom World - Cadence Scheduler
Advances every due daily and weekly cycle; safe to run concurrently with itself.
"""

import asyncio
import random
from datetime import datetime
from typing import Optional, List, Callable, Awaitable

from .config import WorldConfig, get_world_config
from .daily import spawn_if_missing, expire_stale_events
from .logger import logger
from .models import WorldState, TickResult
from .scoring import ScoringPolicy
from .signals import ClassroomSignals
from .store import WorldStore
from .timewindow import utcnow
from .weekly import evaluate_week


log = logger.getChild("cadence")


async def _run_bounded(
    states: List[WorldState],
    step: Callable[[WorldState], Awaitable[bool]],
    concurrency: int,
    label: str
) -> int:
    """Run ``step`` per state under a semaphore; a failing state never stops the rest."""
    semaphore = asyncio.Semaphore(concurrency)

    async def run_one(state: WorldState) -> bool:
        async with semaphore:
            try:
                return await step(state)
            except Exception:
                log.exception(f"{label} failed for world state {state.id}")
                return False

    outcomes = await asyncio.gather(*(run_one(state) for state in states))
    return sum(1 for done in outcomes if done)


async def tick(
    store: WorldStore,
    signals: ClassroomSignals,
    now: Optional[datetime] = None,
    config: Optional[WorldConfig] = None,
    *,
    policy: Optional[ScoringPolicy] = None,
    rng: Optional[random.Random] = None
) -> TickResult:
    """
    One cadence pass: spawn due daily events, expire stale ones, evaluate due weeks.

    Missed days and weeks are not backfilled; each due state gets today's
    event and the most recent week window.
    """
    cfg = config or get_world_config()
    now = now or utcnow()

    async def spawn(state: WorldState) -> bool:
        return await spawn_if_missing(store, state, now, cfg) is not None

    async def evaluate(state: WorldState) -> bool:
        return await evaluate_week(store, signals, state, now, policy=policy, rng=rng, config=cfg) is not None

    due_daily = await store.fetch_due_daily(now, cfg.due_batch_size)
    daily_spawned = await _run_bounded(due_daily, spawn, cfg.tick_concurrency, "Daily spawn")

    expired = await expire_stale_events(store, now, cfg)

    due_weekly = await store.fetch_due_weekly(now, cfg.due_batch_size)
    weekly_evaluated = await _run_bounded(due_weekly, evaluate, cfg.tick_concurrency, "Weekly evaluation")

    result = TickResult(daily_spawned=daily_spawned, expired=expired, weekly_evaluated=weekly_evaluated)
    log.info(
        f"Tick {now.isoformat()}: {len(due_daily)} daily due, {len(due_weekly)} weekly due, "
        f"spawned={daily_spawned} expired={expired} evaluated={weekly_evaluated}"
    )
    return result


# ============================================
# BACKGROUND SERVICE
# ============================================

class CadenceService:
    """Background service that runs cadence ticks periodically."""

    def __init__(
        self,
        store: WorldStore,
        signals: ClassroomSignals,
        interval_seconds: int = 300,
        config: Optional[WorldConfig] = None
    ):
        self.store = store
        self.signals = signals
        self.interval = interval_seconds
        self.config = config
        self.running = False
        self.last_result: Optional[TickResult] = None
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        """Start the cadence service."""
        if self.running:
            return

        self.running = True
        self._task = asyncio.create_task(self._run_loop())
        log.info(f"CadenceService started with {self.interval}s interval")

    async def stop(self):
        """Stop the cadence service."""
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        log.info("CadenceService stopped")

    async def _run_loop(self):
        """Main loop that ticks until stopped."""
        while self.running:
            try:
                self.last_result = await tick(self.store, self.signals, config=self.config)
            except Exception:
                log.exception("CadenceService tick failed")

            await asyncio.sleep(self.interval)
