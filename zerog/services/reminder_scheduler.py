"""Deadline reminders, one pending timer per task id."""

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from zerog.models.task import Task
from zerog.services import clock as clock_utils

logger = logging.getLogger(__name__)

DEFAULT_LEAD_MINUTES = 15


def _default_timer(interval: float, callback: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(interval, callback)
    timer.daemon = True
    return timer


@dataclass
class PendingReminder:
    """A timer armed for one task."""

    task_id: str
    title: str
    deadline: datetime
    fire_at: datetime
    handle: Any
    token: object


class NotificationScheduler:
    """Arms one-shot timers a fixed lead time before each active task's deadline.

    Scheduling for an id always cancels the existing timer for that id first,
    so there is never more than one. When permission is not granted nothing
    is armed; that is a normal branch, not an error.
    """

    def __init__(
        self,
        notifier=None,
        lead_minutes: int = DEFAULT_LEAD_MINUTES,
        permission_granted: bool = True,
        clock: clock_utils.Clock = clock_utils.now,
        timer_factory: Callable[[float, Callable[[], None]], Any] = _default_timer,
    ):
        """Initialize the scheduler.

        Args:
            notifier: Object with send_reminder(title, message, task_id=...).
            lead_minutes: Minutes before the deadline at which to fire.
            permission_granted: Whether local alerts may be raised at all.
            clock: Source of "now".
            timer_factory: Builds a one-shot handle with start()/cancel().
        """
        self._notifier = notifier
        self.lead_time = timedelta(minutes=lead_minutes)
        self.permission_granted = permission_granted
        self._clock = clock
        self._timer_factory = timer_factory
        self._pending: dict[str, PendingReminder] = {}
        self._lock = threading.Lock()

    @property
    def pending_ids(self) -> set[str]:
        with self._lock:
            return set(self._pending)

    def get_pending(self, task_id: str) -> PendingReminder | None:
        with self._lock:
            return self._pending.get(task_id)

    def schedule_for_task(
        self,
        task_id: str,
        title: str,
        deadline: datetime,
        lead_minutes: int | None = None,
    ) -> bool:
        """(Re)arm the reminder for a task.

        Returns:
            True if a timer was armed.
        """
        self.cancel_for_task(task_id)

        if not self.permission_granted:
            return False

        lead = self.lead_time if lead_minutes is None else timedelta(minutes=lead_minutes)
        fire_at = deadline - lead
        delay = (fire_at - self._clock()).total_seconds()
        if delay <= 0:
            return False

        token = object()
        handle = self._timer_factory(delay, lambda: self._fire(task_id, token))
        reminder = PendingReminder(
            task_id=task_id,
            title=title,
            deadline=deadline,
            fire_at=fire_at,
            handle=handle,
            token=token,
        )
        with self._lock:
            self._pending[task_id] = reminder
        handle.start()
        logger.debug(f"Reminder for {task_id} armed at {fire_at.isoformat()}")
        return True

    def cancel_for_task(self, task_id: str) -> bool:
        """Cancel the pending reminder for a task, if any."""
        with self._lock:
            reminder = self._pending.pop(task_id, None)
        if reminder is None:
            return False
        reminder.handle.cancel()
        return True

    def reschedule_all(self, tasks: Iterable[Task]) -> int:
        """Resynchronize timers with the active tasks whose deadline is still ahead.

        Returns:
            Number of timers armed.
        """
        now = self._clock()
        wanted = {
            t.id: t
            for t in tasks
            if not t.is_completed and t.deadline - self.lead_time > now
        }

        for task_id in self.pending_ids - set(wanted):
            self.cancel_for_task(task_id)

        armed = 0
        for task in wanted.values():
            if self.schedule_for_task(task.id, task.title, task.deadline):
                armed += 1
        logger.debug(f"Rescheduled reminders: {armed} armed")
        return armed

    def cancel_all(self) -> None:
        with self._lock:
            reminders = list(self._pending.values())
            self._pending.clear()
        for reminder in reminders:
            reminder.handle.cancel()

    def _fire(self, task_id: str, token: object) -> None:
        with self._lock:
            reminder = self._pending.get(task_id)
            if reminder is None or reminder.token is not token:
                # Superseded by a later schedule or cancelled.
                return
            del self._pending[task_id]

        minutes = int((reminder.deadline - reminder.fire_at).total_seconds() // 60)
        message = f"Due at {reminder.deadline:%H:%M} (in {minutes} min)"
        logger.info(f"Reminder fired for {task_id}: {reminder.title}")
        if self._notifier is None:
            return
        try:
            self._notifier.send_reminder(reminder.title, message, task_id=task_id)
        except Exception as e:
            logger.error(f"Reminder delivery failed for {task_id}: {e}")
