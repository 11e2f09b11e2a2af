"""Domain models for the Zero-G planner."""

from zerog.models.config import (
    AchievementConfig,
    AppConfig,
    ReminderConfig,
    RemoteConfig,
    StorageConfig,
)
from zerog.models.gamification import (
    XP_PER_LEVEL,
    AchievementContext,
    AchievementDefinition,
    GamificationState,
    level_for_xp,
)
from zerog.models.identity import UserIdentity
from zerog.models.snapshot import StoreSnapshot
from zerog.models.task import (
    DEFAULT_COLOR,
    Recurrence,
    Subtask,
    Task,
    TaskCategory,
    TaskStatus,
)

__all__ = [
    # Task
    "DEFAULT_COLOR",
    "Recurrence",
    "Subtask",
    "Task",
    "TaskCategory",
    "TaskStatus",
    # Gamification
    "XP_PER_LEVEL",
    "AchievementContext",
    "AchievementDefinition",
    "GamificationState",
    "level_for_xp",
    # Identity / snapshot
    "UserIdentity",
    "StoreSnapshot",
    # Config
    "AchievementConfig",
    "AppConfig",
    "ReminderConfig",
    "RemoteConfig",
    "StorageConfig",
]
