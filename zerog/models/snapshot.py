"""Read-only view of the task store aggregate."""

from pydantic import BaseModel, ConfigDict, Field

from zerog.models.task import Task


class StoreSnapshot(BaseModel):
    """State exposed to the rest of the application after each mutation.

    `new_achievement` is transient: it reflects the achievement currently on
    display and is never persisted.
    """

    model_config = ConfigDict(frozen=True)

    tasks: tuple[Task, ...] = Field(default_factory=tuple)
    xp: int = 0
    level: int = 1
    streak: int = 0
    achievements: tuple[str, ...] = Field(default_factory=tuple)
    last_completed_date: str | None = None
    new_achievement: str | None = None

    def get_task(self, task_id: str) -> Task | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None

    def to_dict(self) -> dict:
        """Serialize for JSON responses."""
        return {
            "tasks": [t.model_dump(mode="json") for t in self.tasks],
            "xp": self.xp,
            "level": self.level,
            "streak": self.streak,
            "achievements": list(self.achievements),
            "lastCompletedDate": self.last_completed_date,
            "newAchievement": self.new_achievement,
        }
