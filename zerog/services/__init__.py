"""Services for the Zero-G planner."""

from zerog.services.achievement_queue import AchievementQueue
from zerog.services.config_service import (
    ConfigService,
    get_config_service,
    reset_config_service,
)
from zerog.services.event_bus import Event, EventBus
from zerog.services.gamification import (
    ACHIEVEMENTS,
    ACHIEVEMENTS_BY_KEY,
    CompletionOutcome,
)
from zerog.services.notification_service import (
    NotificationPayload,
    NotificationService,
)
from zerog.services.reminder_scheduler import NotificationScheduler, PendingReminder
from zerog.services.session import PlannerSession
from zerog.services.sync_gateway import SyncCommand, SyncGateway, SyncOperation
from zerog.services.task_store import TaskStore

__all__ = [
    # Store
    "TaskStore",
    "AchievementQueue",
    # Gamification
    "ACHIEVEMENTS",
    "ACHIEVEMENTS_BY_KEY",
    "CompletionOutcome",
    # Sync
    "SyncCommand",
    "SyncGateway",
    "SyncOperation",
    # Reminders
    "NotificationScheduler",
    "PendingReminder",
    "NotificationPayload",
    "NotificationService",
    # Event bus
    "Event",
    "EventBus",
    # Config
    "ConfigService",
    "get_config_service",
    "reset_config_service",
    # Session
    "PlannerSession",
]
