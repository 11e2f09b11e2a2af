"""TaskStore - single source of truth for tasks and gamification state.

The task list and the XP/streak/achievement fields form one aggregate. Every
mutation is synchronous and atomic: the new task list and the new
gamification state are computed off to the side and swapped in together, so
readers never see a task marked completed without its XP, or XP without its
level. Side effects (remote sync, reminders, UI fan-out) are never performed
here; they subscribe to the events emitted after each commit. Events are
dispatched before the store lock is released, so every listener sees them
in commit order.
"""

import logging
import threading
from collections.abc import Callable
from datetime import date, datetime
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from zerog.errors import TaskNotFoundError, TaskValidationError
from zerog.models.gamification import GamificationState
from zerog.models.snapshot import StoreSnapshot
from zerog.models.task import Subtask, Task, TaskStatus
from zerog.services import clock as clock_utils
from zerog.services import gamification
from zerog.services.gamification import CompletionOutcome
from zerog.services.achievement_queue import AchievementQueue

logger = logging.getLogger(__name__)

# Fields a caller may set at creation time besides title/deadline.
CREATE_FIELDS = {
    "id",
    "urgency",
    "color",
    "description",
    "category",
    "recurrence",
    "subtasks",
    "group_id",
    "completion_note",
}

# Fields update_task may merge. Status and xp_awarded only change through
# completion/recall so the XP guard cannot be bypassed.
EDITABLE_FIELDS = {
    "title",
    "deadline",
    "urgency",
    "color",
    "description",
    "category",
    "recurrence",
    "group_id",
    "completion_note",
}

# Events that leave one or more tasks in a state the remote store should see.
UPSERT_EVENTS = (
    "task_added",
    "task_updated",
    "task_completed",
    "task_recalled",
    "tasks_bulk_status",
)


def _validation_message(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg', 'invalid value')}" if location else first.get("msg", "")


class TaskStore:
    """Central store for the task collection and derived gamification state.

    Mutations are serialized by a re-entrant lock; readers get immutable
    snapshots with copies of the tasks.

    If `data_dir` is given, the aggregate is persisted to `state.yaml` after
    each commit and reloaded on construction.
    """

    def __init__(
        self,
        data_dir: str | Path | None = None,
        clock: clock_utils.Clock = clock_utils.now,
        achievement_queue: AchievementQueue | None = None,
    ):
        """Initialize the store.

        Args:
            data_dir: Directory for persisting state, or None for memory only.
            clock: Source of "now" for completions and new tasks.
            achievement_queue: Display queue for newly unlocked achievements.
        """
        self.data_dir = Path(data_dir) if data_dir is not None else None
        if self.data_dir is not None:
            self.data_dir.mkdir(parents=True, exist_ok=True)

        self._clock = clock
        self._achievement_queue = achievement_queue or AchievementQueue()
        self._lock = threading.RLock()

        # The aggregate
        self._tasks: list[Task] = []
        self._state = GamificationState()

        # Event listeners
        self._listeners: dict[str, list[Callable]] = {}

        self._load_state()

    # =========================================================================
    # Reads
    # =========================================================================

    def snapshot(self) -> StoreSnapshot:
        """Get a consistent, immutable view of the aggregate."""
        with self._lock:
            return self._snapshot_locked()

    def get_task(self, task_id: str) -> Task | None:
        """Get a copy of a task by ID."""
        with self._lock:
            task = self._find(task_id)
            return task.model_copy(deep=True) if task else None

    def list_tasks(self) -> list[Task]:
        """List copies of all tasks in insertion order."""
        with self._lock:
            return [t.model_copy(deep=True) for t in self._tasks]

    def tasks_on(self, day: date | datetime | str) -> list[Task]:
        """Copies of every task whose deadline falls on the given calendar day."""
        with self._lock:
            return [
                t.model_copy(deep=True)
                for t in self._tasks
                if clock_utils.is_same_day(t.deadline, day)
            ]

    @property
    def gamification_state(self) -> GamificationState:
        with self._lock:
            return self._state.model_copy(deep=True)

    @property
    def achievement_queue(self) -> AchievementQueue:
        return self._achievement_queue

    # =========================================================================
    # Task CRUD
    # =========================================================================

    def add_task(self, title: str, deadline: datetime, **fields: Any) -> Task:
        """Create an active task and append it.

        Args:
            title: Non-empty display string.
            deadline: When the task is due.
            **fields: Optional urgency, color, description, category,
                recurrence, subtasks, group_id, completion_note or id.

        Returns:
            A copy of the created Task, for forwarding to the sync gateway.

        Raises:
            TaskValidationError: On an empty title, bad urgency or unknown field.
        """
        unknown = set(fields) - CREATE_FIELDS
        if unknown:
            raise TaskValidationError(f"Unknown task fields: {', '.join(sorted(unknown))}")
        if fields.get("id") is None:
            fields.pop("id", None)

        try:
            task = Task(
                title=title,
                deadline=deadline,
                created_at=self._clock(),
                status=TaskStatus.ACTIVE,
                xp_awarded=False,
                **fields,
            )
        except ValidationError as e:
            raise TaskValidationError(_validation_message(e)) from e

        with self._lock:
            if self._find(task.id) is not None:
                raise TaskValidationError(f"Duplicate task id: {task.id}")
            tasks = [*self._tasks, task]
            self._commit(tasks, self._state)
            created = task.model_copy(deep=True)
            logger.info(f"Task added: {task.id} '{task.title}' due {task.deadline.isoformat()}")
            self._emit("task_added", {"task_ids": [task.id], "tasks": [created]})

        return created.model_copy(deep=True)

    def update_task(self, task_id: str, **fields: Any) -> StoreSnapshot:
        """Merge fields into an existing task. Never touches gamification state.

        Raises:
            TaskNotFoundError: If no task has this ID.
            TaskValidationError: If a field is not editable or invalid.
        """
        forbidden = set(fields) - EDITABLE_FIELDS
        if forbidden:
            raise TaskValidationError(f"Fields not editable: {', '.join(sorted(forbidden))}")

        with self._lock:
            current = self._find(task_id)
            if current is None:
                raise TaskNotFoundError(task_id)
            if not fields:
                return self._snapshot_locked()

            try:
                updated = Task.model_validate({**current.model_dump(), **fields})
            except ValidationError as e:
                raise TaskValidationError(_validation_message(e)) from e

            tasks = [updated if t.id == task_id else t for t in self._tasks]
            snapshot = self._commit(tasks, self._state)
            self._emit(
                "task_updated",
                {
                    "task_ids": [task_id],
                    "tasks": [updated.model_copy(deep=True)],
                    "fields": sorted(fields),
                },
            )
        return snapshot

    def remove_task(self, task_id: str) -> StoreSnapshot:
        """Remove one task. Removing an unknown ID is a successful no-op."""
        with self._lock:
            task = self._find(task_id)
            if task is None:
                return self._snapshot_locked()
            tasks = [t for t in self._tasks if t.id != task_id]
            snapshot = self._commit(tasks, self._state)
            self._emit("task_removed", {"task_ids": [task_id], "tasks": [task]})
        return snapshot

    def delete_tasks_by_date(self, day: date | datetime | str) -> StoreSnapshot:
        """Remove every task due on the given calendar day, regardless of status.

        Irreversible; no tombstones are kept. The removed tasks travel on the
        `tasks_deleted` event so the remote copies can be deleted too.
        """
        target = clock_utils.as_date(day)
        with self._lock:
            removed = [t for t in self._tasks if clock_utils.is_same_day(t.deadline, target)]
            if not removed:
                return self._snapshot_locked()
            tasks = [t for t in self._tasks if not clock_utils.is_same_day(t.deadline, target)]
            snapshot = self._commit(tasks, self._state)
            key = clock_utils.day_key(target)
            logger.info(f"Deleted {len(removed)} tasks due {key}")
            self._emit(
                "tasks_deleted",
                {"date": key, "task_ids": [t.id for t in removed], "tasks": removed},
            )
        return snapshot

    def replace_all(self, tasks: list[Task | dict]) -> StoreSnapshot:
        """Replace the whole collection (hydration after the remote fetch).

        Gamification state is left as is; it is hydrated through set_user_data.

        Raises:
            TaskValidationError: If any incoming task is invalid; nothing is replaced.
        """
        incoming: dict[str, Task] = {}
        try:
            for raw in tasks:
                task = raw if isinstance(raw, Task) else Task.model_validate(raw)
                incoming[task.id] = task.model_copy(deep=True)
        except ValidationError as e:
            raise TaskValidationError(_validation_message(e)) from e

        with self._lock:
            previous_ids = [t.id for t in self._tasks]
            snapshot = self._commit(list(incoming.values()), self._state)
            logger.info(f"Replaced task collection: {len(previous_ids)} -> {len(incoming)} tasks")
            self._emit(
                "tasks_replaced",
                {"task_ids": list(incoming), "previous_ids": previous_ids},
            )
        return snapshot

    # =========================================================================
    # Completion / recall
    # =========================================================================

    def complete_task(self, task_id: str) -> StoreSnapshot:
        """Complete a task, awarding XP and advancing streak/achievements.

        Unknown or already-completed tasks are a no-op.
        """
        with self._lock:
            now = self._clock()
            outcome = gamification.complete(self._state, self._tasks, task_id, now)
            if outcome is None:
                return self._snapshot_locked()
            self._achievement_queue.push(outcome.unlocked, now)
            snapshot = self._commit(outcome.tasks, outcome.state)
            logger.info(
                f"Task completed: {task_id} (+{outcome.xp_gained} XP, "
                f"xp={outcome.state.xp}, streak={outcome.state.streak})"
            )
            self._emit_completion("task_completed", outcome, snapshot)
        return snapshot

    def recall_task(self, task_id: str) -> StoreSnapshot:
        """Move a completed task back to active. Awarded XP is not revoked."""
        with self._lock:
            tasks, recalled = gamification.recall(self._tasks, {task_id})
            if not recalled:
                return self._snapshot_locked()
            snapshot = self._commit(tasks, self._state)
            self._emit(
                "task_recalled",
                {"task_ids": recalled, "tasks": [snapshot.get_task(tid) for tid in recalled]},
            )
        return snapshot

    def set_all_status(self, day: date | datetime | str, status: TaskStatus | str) -> StoreSnapshot:
        """Complete or recall every task due on a calendar day in one commit.

        Completing yields the same XP as completing each task on its own; the
        streak moves at most once for the whole batch.
        """
        target = clock_utils.as_date(day)
        try:
            status = TaskStatus(status)
        except ValueError as e:
            raise TaskValidationError(f"Unknown status: {status}") from e

        with self._lock:
            now = self._clock()
            if status == TaskStatus.COMPLETED:
                outcome = gamification.complete_day(self._state, self._tasks, target, now)
                if outcome is None:
                    return self._snapshot_locked()
                self._achievement_queue.push(outcome.unlocked, now)
                snapshot = self._commit(outcome.tasks, outcome.state)
                logger.info(
                    f"Completed {len(outcome.completed_ids)} tasks due "
                    f"{clock_utils.day_key(target)} (+{outcome.xp_gained} XP)"
                )
                self._emit_completion("tasks_bulk_status", outcome, snapshot, status=status)
            else:
                ids = {t.id for t in self._tasks if clock_utils.is_same_day(t.deadline, target)}
                tasks, recalled = gamification.recall(self._tasks, ids)
                if not recalled:
                    return self._snapshot_locked()
                snapshot = self._commit(tasks, self._state)
                self._emit(
                    "tasks_bulk_status",
                    {
                        "date": clock_utils.day_key(target),
                        "status": status.value,
                        "task_ids": recalled,
                        "tasks": [snapshot.get_task(tid) for tid in recalled],
                    },
                )
        return snapshot

    # =========================================================================
    # Subtasks
    # =========================================================================

    def add_subtask(self, task_id: str, text: str) -> StoreSnapshot:
        """Append a checklist item to a task."""
        text = (text or "").strip()
        if not text:
            raise TaskValidationError("Subtask text must not be empty")
        return self._edit_subtasks(task_id, lambda subs: [*subs, Subtask(text=text)])

    def toggle_subtask(self, task_id: str, subtask_id: str) -> StoreSnapshot:
        """Flip a checklist item's done flag."""
        return self._edit_subtasks(
            task_id,
            lambda subs: [
                s.model_copy(update={"done": not s.done}) if s.id == subtask_id else s
                for s in subs
            ],
        )

    def remove_subtask(self, task_id: str, subtask_id: str) -> StoreSnapshot:
        """Remove a checklist item."""
        return self._edit_subtasks(
            task_id, lambda subs: [s for s in subs if s.id != subtask_id]
        )

    def _edit_subtasks(
        self, task_id: str, edit: Callable[[list[Subtask]], list[Subtask]]
    ) -> StoreSnapshot:
        with self._lock:
            current = self._find(task_id)
            if current is None:
                raise TaskNotFoundError(task_id)
            updated = current.model_copy(update={"subtasks": edit(list(current.subtasks))})
            tasks = [updated if t.id == task_id else t for t in self._tasks]
            snapshot = self._commit(tasks, self._state)
            self._emit(
                "task_updated",
                {
                    "task_ids": [task_id],
                    "tasks": [updated.model_copy(deep=True)],
                    "fields": ["subtasks"],
                },
            )
        return snapshot

    # =========================================================================
    # Gamification state
    # =========================================================================

    def set_user_data(
        self,
        xp: int,
        streak: int,
        achievements: list[str],
        last_completed_date: str | None,
    ) -> StoreSnapshot:
        """Replace the gamification fields (profile hydration).

        Level is not accepted; it is derived from xp.
        """
        try:
            state = GamificationState(
                xp=xp,
                streak=streak,
                achievements=list(dict.fromkeys(achievements)),
                last_completed_date=last_completed_date,
            )
        except ValidationError as e:
            raise TaskValidationError(_validation_message(e)) from e

        with self._lock:
            snapshot = self._commit(self._tasks, state)
            self._emit(
                "user_data_set", {"xp": state.xp, "level": state.level, "streak": state.streak}
            )
        return snapshot

    def clear_new_achievement(self) -> StoreSnapshot:
        """Dismiss the achievement on display; the next queued one takes its place."""
        with self._lock:
            self._achievement_queue.dismiss(self._clock())
            return self._snapshot_locked()

    # =========================================================================
    # Event System
    # =========================================================================

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """Subscribe to an event type ("*" for all events).

        Args:
            event_type: The event type to subscribe to.
            callback: Function called with the event dict after a commit.
        """
        if event_type not in self._listeners:
            self._listeners[event_type] = []
        self._listeners[event_type].append(callback)

    def unsubscribe(self, event_type: str, callback: Callable) -> None:
        """Unsubscribe from an event type."""
        if event_type in self._listeners:
            self._listeners[event_type] = [
                cb for cb in self._listeners[event_type] if cb != callback
            ]

    def _emit(self, event_type: str, data: dict) -> None:
        """Emit an event to all subscribers. Caller holds the lock.

        Listeners run on the committing thread before the lock is released;
        they may read the store but must not block on another thread that
        writes to it. Listener failures are logged; the commit that produced
        the event stands regardless.
        """
        data["event_type"] = event_type
        data["timestamp"] = self._clock().isoformat()

        callbacks = [
            *self._listeners.get(event_type, []),
            *self._listeners.get("*", []),
        ]
        for callback in callbacks:
            try:
                callback(data)
            except Exception:
                logger.exception(f"Listener failed for {event_type}")

    def _emit_completion(
        self,
        event_type: str,
        outcome: CompletionOutcome,
        snapshot: StoreSnapshot,
        status: TaskStatus | None = None,
    ) -> None:
        affected = [*outcome.completed_ids, *(t.id for t in outcome.spawned)]
        data = {
            "task_ids": affected,
            "tasks": [snapshot.get_task(tid) for tid in affected],
            "xp_gained": outcome.xp_gained,
            "unlocked": list(outcome.unlocked),
            "spawned_ids": [t.id for t in outcome.spawned],
        }
        if status is not None:
            data["status"] = status.value
        self._emit(event_type, data)

        if outcome.unlocked:
            self._emit("achievement_unlocked", {"keys": list(outcome.unlocked)})

    # =========================================================================
    # Commit / persistence
    # =========================================================================

    def _find(self, task_id: str) -> Task | None:
        for task in self._tasks:
            if task.id == task_id:
                return task
        return None

    def _snapshot_locked(self) -> StoreSnapshot:
        return StoreSnapshot(
            tasks=tuple(t.model_copy(deep=True) for t in self._tasks),
            xp=self._state.xp,
            level=self._state.level,
            streak=self._state.streak,
            achievements=tuple(self._state.achievements),
            last_completed_date=self._state.last_completed_date,
            new_achievement=self._achievement_queue.current(self._clock()),
        )

    def _commit(self, tasks: list[Task], state: GamificationState) -> StoreSnapshot:
        """Swap in a new aggregate. Caller holds the lock."""
        self._tasks = list(tasks)
        self._state = state
        self._save_state()
        return self._snapshot_locked()

    def _get_state_file(self) -> Path | None:
        """Get the state file path."""
        if self.data_dir is None:
            return None
        return self.data_dir / "state.yaml"

    def _save_state(self) -> None:
        """Save the aggregate to disk. The transient display queue is not saved."""
        state_file = self._get_state_file()
        if state_file is None:
            return

        state = {
            "tasks": [t.model_dump(mode="json") for t in self._tasks],
            "gamification": self._state.model_dump(mode="json", exclude={"level"}),
        }
        try:
            with open(state_file, "w") as f:
                yaml.safe_dump(state, f, default_flow_style=False, allow_unicode=True)
            logger.debug(f"Saved state: {len(self._tasks)} tasks, xp={self._state.xp}")
        except OSError as e:
            logger.error(f"Failed to save state to {state_file}: {e}")

    def _load_state(self) -> None:
        """Load the aggregate from disk, keeping defaults if the file is missing or corrupt."""
        state_file = self._get_state_file()
        if state_file is None or not state_file.exists():
            return

        try:
            with open(state_file) as f:
                state = yaml.safe_load(f)

            if not state:
                return

            tasks = [Task.model_validate(t) for t in state.get("tasks") or []]
            gamification_state = GamificationState.model_validate(state.get("gamification") or {})
        except (OSError, yaml.YAMLError, ValidationError, AttributeError, TypeError) as e:
            logger.warning(f"Ignoring unreadable state file {state_file}: {e}")
            return

        self._tasks = tasks
        self._state = gamification_state
        logger.info(f"Loaded state: {len(tasks)} tasks, xp={gamification_state.xp}")

    def clear(self) -> None:
        """Clear all state (for testing)."""
        with self._lock:
            self._achievement_queue.clear()
            self._commit([], GamificationState())
            self._emit("tasks_replaced", {"task_ids": [], "previous_ids": []})
