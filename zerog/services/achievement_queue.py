"""Display queue for newly unlocked achievements.

Only one achievement is on display at a time. Each stays visible for a fixed
window and then expires on its own; achievements unlocked together wait in
line and are shown one after another, never overlapping.

The queue is driven by the caller's clock instead of its own timers, so any
read (`current`) advances it.
"""

import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta

DEFAULT_DISPLAY_SECONDS = 4.0


@dataclass
class _Showing:
    key: str
    until: datetime


class AchievementQueue:
    """FIFO of achievement keys with auto-expiring display slots."""

    def __init__(self, display_seconds: float = DEFAULT_DISPLAY_SECONDS):
        self._window = timedelta(seconds=display_seconds)
        self._waiting: deque[str] = deque()
        self._showing: _Showing | None = None
        self._lock = threading.Lock()

    @property
    def display_seconds(self) -> float:
        return self._window.total_seconds()

    def push(self, keys: list[str], now: datetime) -> None:
        """Queue keys for display; the first starts immediately if nothing is showing."""
        with self._lock:
            self._waiting.extend(keys)
            self._advance(now)

    def current(self, now: datetime) -> str | None:
        """The achievement on display at `now`, if any."""
        with self._lock:
            self._advance(now)
            return self._showing.key if self._showing else None

    def dismiss(self, now: datetime) -> str | None:
        """Clear the current entry early; the next one (if any) starts now.

        Returns the key that was dismissed.
        """
        with self._lock:
            self._advance(now)
            dismissed = self._showing.key if self._showing else None
            self._showing = None
            self._advance(now)
            return dismissed

    @property
    def pending(self) -> list[str]:
        """Keys still waiting for a display slot."""
        with self._lock:
            return list(self._waiting)

    def clear(self) -> None:
        with self._lock:
            self._waiting.clear()
            self._showing = None

    def _advance(self, now: datetime) -> None:
        # Entries that expired while nobody was looking are skipped in order,
        # each slot starting where the previous one ended.
        while True:
            if self._showing is not None:
                if now < self._showing.until:
                    return
                start = self._showing.until
                self._showing = None
            else:
                start = now
            if not self._waiting:
                return
            self._showing = _Showing(key=self._waiting.popleft(), until=start + self._window)
