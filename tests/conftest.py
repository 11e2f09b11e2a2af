"""Pytest configuration and shared fixtures for planner tests."""

import tempfile
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from zerog.services.achievement_queue import AchievementQueue
from zerog.services.task_store import TaskStore


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current

    def set(self, value: datetime) -> None:
        self.current = value


@pytest.fixture
def clock():
    """A clock frozen at 2026-03-10 09:00 local time."""
    return FakeClock(datetime(2026, 3, 10, 9, 0))


@pytest.fixture
def temp_dir():
    """Create a temporary directory for state files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store(clock):
    """In-memory TaskStore on the fake clock."""
    return TaskStore(clock=clock, achievement_queue=AchievementQueue(display_seconds=4))


@pytest.fixture
def deadline(clock):
    """A deadline later on the fake clock's current day."""
    return clock().replace(hour=17)
