"""Gamification state and achievement definitions."""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, Field, computed_field

from zerog.models.task import Task

XP_PER_LEVEL = 500


def level_for_xp(xp: int) -> int:
    """Derive the level from an XP total."""
    return xp // XP_PER_LEVEL + 1


class GamificationState(BaseModel):
    """XP economy derived from task completions.

    `level` is never stored; it is recomputed from `xp` on every read so the
    two cannot drift apart.
    """

    xp: int = Field(default=0, ge=0)
    streak: int = Field(default=0, ge=0)
    achievements: list[str] = Field(
        default_factory=list,
        description="Unlocked achievement keys, append-only",
    )
    last_completed_date: str | None = Field(
        default=None,
        description="ISO calendar day (YYYY-MM-DD) of the latest completion",
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def level(self) -> int:
        return level_for_xp(self.xp)


@dataclass(frozen=True)
class AchievementContext:
    """Everything an achievement predicate may look at."""

    tasks: tuple[Task, ...]
    xp: int
    level: int
    streak: int
    achievements: tuple[str, ...]
    just_completed: tuple[Task, ...]
    now: datetime

    @property
    def completed(self) -> list[Task]:
        return [t for t in self.tasks if t.is_completed]


@dataclass(frozen=True)
class AchievementDefinition:
    """A named milestone and the predicate that unlocks it."""

    key: str
    icon: str
    label: str
    description: str
    predicate: Callable[[AchievementContext], bool]

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "icon": self.icon,
            "label": self.label,
            "description": self.description,
        }
