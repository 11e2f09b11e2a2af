"""PlannerSession - owns the store and its detached side effects for one session.

Built once at session start and closed at session end. Consumers receive the
session (or its store) explicitly; nothing here is a module-level global.

Wiring (store event -> side effect):
- task_added / task_updated / task_completed / task_recalled /
  tasks_bulk_status -> push_upsert per task, reminder (re)armed or cancelled
- task_removed / tasks_deleted -> push_bulk_delete, reminders cancelled
- tasks_replaced -> reminders resynchronized
- any XP change -> push_profile
- every event -> event bus
"""

import logging
from datetime import datetime, timedelta

from zerog.models.config import AppConfig
from zerog.models.identity import UserIdentity
from zerog.models.task import Task, TaskCategory
from zerog.services import clock as clock_utils
from zerog.services.achievement_queue import AchievementQueue
from zerog.services.event_bus import EventBus
from zerog.services.notification_service import NotificationService
from zerog.services.reminder_scheduler import NotificationScheduler
from zerog.services.sync_gateway import SyncGateway
from zerog.services.task_store import UPSERT_EVENTS, TaskStore

logger = logging.getLogger(__name__)

PROFILE_EVENTS = ("task_completed", "tasks_bulk_status")


def demo_tasks(now: datetime) -> list[dict]:
    """Placeholder missions shown before a user has any of their own."""
    today = now.replace(minute=0, second=0, microsecond=0)
    return [
        {
            "title": "Welcome aboard, Commander",
            "deadline": today + timedelta(hours=2),
            "urgency": 1,
            "description": "Complete a mission to earn XP",
            "category": TaskCategory.OTHER,
        },
        {
            "title": "Plan tomorrow's missions",
            "deadline": today + timedelta(days=1),
            "urgency": 3,
            "category": TaskCategory.WORK,
        },
        {
            "title": "Stretch break",
            "deadline": today + timedelta(days=2),
            "urgency": 2,
            "category": TaskCategory.HEALTH,
        },
    ]


class PlannerSession:
    """Composition root for one planner session."""

    def __init__(
        self,
        config: AppConfig | None = None,
        identity: UserIdentity | None = None,
        clock: clock_utils.Clock = clock_utils.now,
        store: TaskStore | None = None,
        gateway: SyncGateway | None = None,
        scheduler: NotificationScheduler | None = None,
        event_bus: EventBus | None = None,
        notifier: NotificationService | None = None,
    ):
        self.config = config or AppConfig()
        self.identity = identity
        self._clock = clock

        self.event_bus = event_bus or EventBus()
        self.store = store or TaskStore(
            data_dir=self.config.storage.data_dir,
            clock=clock,
            achievement_queue=AchievementQueue(self.config.achievements.display_seconds),
        )
        self.gateway = gateway or SyncGateway(
            self.store,
            base_url=self.config.remote.base_url,
            timeout=self.config.remote.timeout,
            queue_size=self.config.remote.queue_size,
            enabled=self.config.remote.enabled,
        )
        self.notifier = notifier or NotificationService(event_bus=self.event_bus)
        self.scheduler = scheduler or NotificationScheduler(
            notifier=self.notifier,
            lead_minutes=self.config.reminders.lead_minutes,
            permission_granted=self.config.reminders.enabled,
            clock=clock,
        )

        self._started = False

    @property
    def started(self) -> bool:
        return self._started

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Seed, wire, hydrate and arm reminders. Idempotent."""
        if self._started:
            return

        # Demo tasks are local placeholders; seeding before the wiring keeps
        # them off the remote store.
        if self.config.storage.seed_demo_tasks and not self.store.list_tasks():
            self.seed_demo_tasks()

        self.store.subscribe("*", self._on_store_event)
        self.gateway.start()
        self._started = True

        if self.identity is not None:
            self._hydrate()

        self.scheduler.reschedule_all(self.store.list_tasks())
        logger.info(
            f"Planner session started ({len(self.store.list_tasks())} tasks, "
            f"user={self.identity.email if self.identity else 'anonymous'})"
        )

    def close(self) -> None:
        """Cancel reminders, flush pending pushes and stop the worker."""
        if not self._started:
            return

        self.store.unsubscribe("*", self._on_store_event)
        self.scheduler.cancel_all()
        self.gateway.stop()
        flushed = self.gateway.drain()
        self._started = False
        logger.info(f"Planner session closed ({flushed} pending pushes flushed)")

    def __enter__(self) -> "PlannerSession":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def sign_in(self, identity: UserIdentity) -> bool:
        """Attach a user identity and hydrate from their remote data.

        Returns:
            True if the remote task list replaced the local one.
        """
        self.identity = identity
        if not self._started:
            return False
        return self._hydrate()

    def sign_out(self) -> None:
        """Detach the identity; later mutations stay local."""
        self.identity = None

    def seed_demo_tasks(self) -> list[Task]:
        return [self.store.add_task(**fields) for fields in demo_tasks(self._clock())]

    def _hydrate(self) -> bool:
        replaced = self.gateway.hydrate(self.identity)
        self.gateway.hydrate_profile(self.identity)
        return replaced

    # =========================================================================
    # Store event wiring
    # =========================================================================

    def _on_store_event(self, data: dict) -> None:
        event_type = data.get("event_type")
        tasks: list[Task] = [t for t in data.get("tasks", []) if t is not None]

        if event_type in UPSERT_EVENTS:
            for task in tasks:
                self.gateway.push_upsert(task, self.identity)
                self._update_reminder(task)
        elif event_type in ("task_removed", "tasks_deleted"):
            self.gateway.push_bulk_delete(tasks)
            for task in tasks:
                self.scheduler.cancel_for_task(task.id)
        elif event_type == "tasks_replaced":
            self.scheduler.reschedule_all(self.store.list_tasks())

        if event_type in PROFILE_EVENTS and (data.get("xp_gained") or data.get("unlocked")):
            self.gateway.push_profile(self.store.snapshot(), self.identity)

        self.event_bus.publish_store_event(data)

    def _update_reminder(self, task: Task) -> None:
        if task.is_completed:
            self.scheduler.cancel_for_task(task.id)
        else:
            self.scheduler.schedule_for_task(task.id, task.title, task.deadline)
