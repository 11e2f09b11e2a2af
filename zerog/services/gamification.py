"""Gamification engine: XP awards, levels, streaks and achievements.

Pure computation invoked by the TaskStore inside a mutation. Nothing here
touches the store, the network or timers; every function takes the current
state and returns a new one.

Rules:
- XP award is urgency * 20, granted only while the task's xp_awarded flag is
  false (idempotence guard, survives recall).
- Level is floor(xp / 500) + 1, always derived from xp.
- Streak advances at most once per calendar day: +1 if the previous
  completion day was exactly the day before, otherwise it restarts at 1.
- Achievements are append-only; every newly satisfied predicate is unlocked
  and reported back for display.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from zerog.models.gamification import (
    AchievementContext,
    AchievementDefinition,
    GamificationState,
    level_for_xp,
)
from zerog.models.task import Recurrence, Task, TaskCategory, TaskStatus
from zerog.services import clock

logger = logging.getLogger(__name__)

XP_PER_URGENCY = 20
NIGHT_OWL_HOUR = 22
SPEED_DEMON_SECONDS = 60


def _completed_count(at_least: int):
    return lambda ctx: len(ctx.completed) >= at_least


def _streak_at_least(days: int):
    return lambda ctx: ctx.streak >= days


def _level_at_least(level: int):
    return lambda ctx: ctx.level >= level


def _night_owl(ctx: AchievementContext) -> bool:
    return any(t.deadline.hour >= NIGHT_OWL_HOUR for t in ctx.just_completed)


def _speed_demon(ctx: AchievementContext) -> bool:
    return any(
        (ctx.now - t.created_at).total_seconds() < SPEED_DEMON_SECONDS
        for t in ctx.just_completed
    )


def _all_categories(ctx: AchievementContext) -> bool:
    used = {t.category for t in ctx.completed if t.category is not None}
    return len(used) >= len(TaskCategory)


ACHIEVEMENTS: tuple[AchievementDefinition, ...] = (
    AchievementDefinition("first_mission", "🚀", "First Launch", "Complete your first mission", _completed_count(1)),
    AchievementDefinition("missions_10", "🎖️", "Veteran", "Complete 10 missions", _completed_count(10)),
    AchievementDefinition("missions_50", "⭐", "Elite Operative", "Complete 50 missions", _completed_count(50)),
    AchievementDefinition("missions_100", "🏆", "Legend", "Complete 100 missions", _completed_count(100)),
    AchievementDefinition("streak_3", "🔥", "On Fire", "3-day mission streak", _streak_at_least(3)),
    AchievementDefinition("streak_7", "💫", "Week Warrior", "7-day mission streak", _streak_at_least(7)),
    AchievementDefinition("streak_30", "🛡️", "Iron Commander", "30-day mission streak", _streak_at_least(30)),
    AchievementDefinition("night_owl", "🦉", "Night Owl", "Complete a mission after 10 PM", _night_owl),
    AchievementDefinition("speed_demon", "⚡", "Speed Demon", "Complete a mission in under 1 minute", _speed_demon),
    AchievementDefinition("level_5", "🌟", "Rising Star", "Reach Level 5", _level_at_least(5)),
    AchievementDefinition("level_10", "👨‍🚀", "Commander", "Reach Level 10", _level_at_least(10)),
    AchievementDefinition("all_categories", "🎨", "Renaissance", "Complete tasks in all 5 categories", _all_categories),
)

ACHIEVEMENTS_BY_KEY: dict[str, AchievementDefinition] = {a.key: a for a in ACHIEVEMENTS}


@dataclass
class CompletionOutcome:
    """Result of a completion event, committed by the store as one unit."""

    state: GamificationState
    tasks: list[Task]
    completed_ids: list[str] = field(default_factory=list)
    xp_gained: int = 0
    unlocked: list[str] = field(default_factory=list)
    spawned: list[Task] = field(default_factory=list)


def award_for(task: Task) -> int:
    """XP a completion of this task would grant right now."""
    if task.xp_awarded:
        return 0
    return task.urgency * XP_PER_URGENCY


def advance_streak(state: GamificationState, day: date) -> tuple[int, str]:
    """Compute (streak, last_completed_date) after a completion on `day`."""
    key = clock.day_key(day)
    last = state.last_completed_date
    if last == key:
        return state.streak, key
    if last is not None and clock.as_date(last) > day:
        # A later day is already on record; an older day cannot extend it.
        return state.streak, last
    if clock.is_day_before(last, day):
        return state.streak + 1, key
    return 1, key


def evaluate_achievements(ctx: AchievementContext) -> list[str]:
    """Keys whose predicate holds and which are not yet unlocked, in catalogue order."""
    unlocked = []
    for definition in ACHIEVEMENTS:
        if definition.key in ctx.achievements:
            continue
        try:
            satisfied = definition.predicate(ctx)
        except Exception:
            logger.exception(f"Achievement predicate failed: {definition.key}")
            continue
        if satisfied:
            unlocked.append(definition.key)
    return unlocked


def next_occurrence(task: Task, now: datetime) -> Task | None:
    """Build the next instance of a recurring task, or None."""
    if task.recurrence is None:
        return None

    if task.recurrence == Recurrence.DAILY:
        deadline = task.deadline + timedelta(days=1)
    elif task.recurrence == Recurrence.WEEKLY:
        deadline = task.deadline + timedelta(days=7)
    else:
        deadline = clock.add_months(task.deadline, 1)

    return task.model_copy(
        update={
            "id": str(uuid.uuid4()),
            "deadline": deadline,
            "created_at": now,
            "status": TaskStatus.ACTIVE,
            "xp_awarded": False,
            "completion_note": None,
            "subtasks": [s.model_copy(update={"done": False}) for s in task.subtasks],
        },
        deep=True,
    )


def _apply(
    state: GamificationState,
    tasks: list[Task],
    targets: list[Task],
    streak_day: date,
    now: datetime,
) -> CompletionOutcome:
    target_ids = {t.id for t in targets}
    xp_gained = sum(award_for(t) for t in targets)

    updated: list[Task] = []
    spawned: list[Task] = []
    for task in tasks:
        if task.id not in target_ids:
            updated.append(task)
            continue
        updated.append(
            task.model_copy(update={"status": TaskStatus.COMPLETED, "xp_awarded": True})
        )
        follow_up = next_occurrence(task, now)
        if follow_up is not None:
            spawned.append(follow_up)
    updated.extend(spawned)

    xp = state.xp + xp_gained
    streak, last_day = advance_streak(state, streak_day)

    ctx = AchievementContext(
        tasks=tuple(updated),
        xp=xp,
        level=level_for_xp(xp),
        streak=streak,
        achievements=tuple(state.achievements),
        just_completed=tuple(targets),
        now=now,
    )
    unlocked = evaluate_achievements(ctx)

    new_state = GamificationState(
        xp=xp,
        streak=streak,
        achievements=[*state.achievements, *unlocked],
        last_completed_date=last_day,
    )
    return CompletionOutcome(
        state=new_state,
        tasks=updated,
        completed_ids=[t.id for t in targets],
        xp_gained=xp_gained,
        unlocked=unlocked,
        spawned=spawned,
    )


def complete(
    state: GamificationState,
    tasks: list[Task],
    task_id: str,
    now: datetime,
) -> CompletionOutcome | None:
    """Complete one task. Returns None for an unknown or already-completed task."""
    target = next((t for t in tasks if t.id == task_id), None)
    if target is None or target.is_completed:
        return None
    return _apply(state, tasks, [target], now.date(), now)


def complete_day(
    state: GamificationState,
    tasks: list[Task],
    day: date,
    now: datetime,
) -> CompletionOutcome | None:
    """Complete every active task due on `day` in one event.

    XP equals the sum of individual awards; the streak is advanced once,
    bucketed on `day` rather than on `now`.
    """
    targets = [t for t in tasks if clock.is_same_day(t.deadline, day) and not t.is_completed]
    if not targets:
        return None
    return _apply(state, tasks, targets, day, now)


def recall(tasks: list[Task], task_ids: set[str]) -> tuple[list[Task], list[str]]:
    """Move completed tasks back to active. XP and xp_awarded are untouched."""
    updated: list[Task] = []
    recalled: list[str] = []
    for task in tasks:
        if task.id in task_ids and task.is_completed:
            updated.append(task.model_copy(update={"status": TaskStatus.ACTIVE}))
            recalled.append(task.id)
        else:
            updated.append(task)
    return updated, recalled
