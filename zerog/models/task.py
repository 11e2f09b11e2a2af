"""Task model - a schedulable mission with a deadline and urgency."""

import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

DEFAULT_COLOR = "#3b82f6"


def to_local_time(value: datetime) -> datetime:
    """Naive local time for `value`; aware datetimes are converted first."""
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


class TaskStatus(str, Enum):
    """Task lifecycle status.

    Transitions:
    - ACTIVE → COMPLETED (completion, the only path that awards XP)
    - COMPLETED → ACTIVE (explicit recall)
    """

    ACTIVE = "active"
    COMPLETED = "completed"


class TaskCategory(str, Enum):
    """Categories used by the all-categories achievement."""

    WORK = "work"
    PERSONAL = "personal"
    HEALTH = "health"
    LEARNING = "learning"
    OTHER = "other"


class Recurrence(str, Enum):
    """How a completed task re-spawns its next instance."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class Subtask(BaseModel):
    """A checklist item inside a task."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    text: str
    done: bool = False


class Task(BaseModel):
    """A unit of schedulable work.

    The `xp_awarded` flag is the idempotence guard for the XP economy: once
    set, no later completion of this task adds XP again, even after a recall.
    """

    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Opaque identifier, assigned locally, stable for the task's lifetime",
    )
    title: str = Field(..., description="Non-empty display string")
    deadline: datetime = Field(..., description="When the task is due")
    urgency: int = Field(default=1, ge=1, le=5, description="1-5, multiplies the XP award")
    status: TaskStatus = Field(default=TaskStatus.ACTIVE)
    created_at: datetime = Field(default_factory=datetime.now)
    xp_awarded: bool = Field(
        default=False,
        description="True once XP has been granted for this task",
    )
    color: str = Field(default=DEFAULT_COLOR)
    description: str = Field(default="")
    category: TaskCategory | None = None
    recurrence: Recurrence | None = None
    subtasks: list[Subtask] = Field(default_factory=list)
    group_id: str | None = None
    completion_note: str | None = None

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be empty")
        return value

    @field_validator("deadline", "created_at")
    @classmethod
    def _naive_local(cls, value: datetime) -> datetime:
        # Offset-aware values become naive local time.
        return to_local_time(value)

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED
