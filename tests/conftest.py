"""Shared fixtures: an in-memory store and signals driven by a controllable clock."""

from datetime import datetime, timedelta, timezone

import pytest

from classworld.config import WorldConfig
from classworld.memory_store import MemoryWorldStore
from classworld.signals import MemoryClassroomSignals


# Wednesday 2025-01-15, 10:00 in Toronto (EST, UTC-5)
NOW = datetime(2025, 1, 15, 15, 0, tzinfo=timezone.utc)

# Friday 2025-01-17, 17:30 in Toronto, just after the weekly trigger
FRIDAY_EVENING = datetime(2025, 1, 17, 22, 30, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def config():
    return WorldConfig(_env_file=None)


@pytest.fixture
def store(clock):
    return MemoryWorldStore(clock=clock)


@pytest.fixture
def signals():
    return MemoryClassroomSignals()
