"""Task routes for the Zero-G planner.

Provides REST API endpoints over the session's TaskStore:
- Read the current snapshot
- Create, edit, complete, recall and remove tasks
- Subtask checklist edits
- Per-day bulk status changes and deletion
- Achievement catalogue and toast dismissal
"""

import logging
from datetime import date

from flask import Blueprint, current_app, jsonify, request
from pydantic import ValidationError

from zerog.errors import TaskNotFoundError, TaskValidationError
from zerog.models.identity import UserIdentity
from zerog.services.gamification import ACHIEVEMENTS
from zerog.services.session import PlannerSession

logger = logging.getLogger(__name__)

tasks_bp = Blueprint("tasks", __name__)


def _get_session() -> PlannerSession:
    """Get the planner session from app extensions."""
    return current_app.extensions["planner_session"]


def _parse_day(value: str) -> date | None:
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


@tasks_bp.errorhandler(TaskValidationError)
def handle_validation_error(error: TaskValidationError):
    return jsonify({"error": str(error)}), 400


@tasks_bp.errorhandler(TaskNotFoundError)
def handle_not_found(error: TaskNotFoundError):
    return jsonify({"error": "Task not found", "task_id": error.task_id}), 404


@tasks_bp.route("/state", methods=["GET"])
def get_state():
    """Current snapshot: tasks, xp, level, streak, achievements, newAchievement."""
    return jsonify(_get_session().store.snapshot().to_dict())


@tasks_bp.route("/tasks", methods=["GET"])
def list_tasks():
    """List tasks, optionally only those due on ?date=YYYY-MM-DD."""
    store = _get_session().store
    day = request.args.get("date")
    if day:
        parsed = _parse_day(day)
        if parsed is None:
            return jsonify({"error": f"Invalid date: {day}"}), 400
        tasks = store.tasks_on(parsed)
    else:
        tasks = store.list_tasks()
    return jsonify({"tasks": [t.model_dump(mode="json") for t in tasks]})


@tasks_bp.route("/tasks", methods=["POST"])
def create_task():
    """Create a task.

    Expected JSON payload:
        {"title": str, "deadline": ISO timestamp, "urgency": 1-5, ...}
    """
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({"error": "Expected a JSON object"}), 400
    title = data.pop("title", None)
    deadline = data.pop("deadline", None)
    if not title or not deadline:
        return jsonify({"error": "title and deadline are required"}), 400

    task = _get_session().store.add_task(title, deadline, **data)
    return jsonify({"task": task.model_dump(mode="json")}), 201


@tasks_bp.route("/tasks/<task_id>", methods=["GET"])
def get_task(task_id: str):
    task = _get_session().store.get_task(task_id)
    if task is None:
        raise TaskNotFoundError(task_id)
    return jsonify({"task": task.model_dump(mode="json")})


@tasks_bp.route("/tasks/<task_id>", methods=["PATCH"])
def update_task(task_id: str):
    """Merge editable fields into a task."""
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        return jsonify({"error": "Expected a JSON object"}), 400
    snapshot = _get_session().store.update_task(task_id, **data)
    return jsonify({"task": snapshot.get_task(task_id).model_dump(mode="json")})


@tasks_bp.route("/tasks/<task_id>", methods=["DELETE"])
def remove_task(task_id: str):
    """Remove a task. Removing an unknown task is not an error."""
    snapshot = _get_session().store.remove_task(task_id)
    return jsonify({"status": "removed", "state": snapshot.to_dict()})


@tasks_bp.route("/tasks/<task_id>/complete", methods=["POST"])
def complete_task(task_id: str):
    store = _get_session().store
    if store.get_task(task_id) is None:
        raise TaskNotFoundError(task_id)
    return jsonify(store.complete_task(task_id).to_dict())


@tasks_bp.route("/tasks/<task_id>/recall", methods=["POST"])
def recall_task(task_id: str):
    store = _get_session().store
    if store.get_task(task_id) is None:
        raise TaskNotFoundError(task_id)
    return jsonify(store.recall_task(task_id).to_dict())


@tasks_bp.route("/tasks/<task_id>/subtasks", methods=["POST"])
def add_subtask(task_id: str):
    data = request.get_json(silent=True) or {}
    snapshot = _get_session().store.add_subtask(task_id, data.get("text", ""))
    return jsonify({"task": snapshot.get_task(task_id).model_dump(mode="json")}), 201


@tasks_bp.route("/tasks/<task_id>/subtasks/<subtask_id>/toggle", methods=["POST"])
def toggle_subtask(task_id: str, subtask_id: str):
    snapshot = _get_session().store.toggle_subtask(task_id, subtask_id)
    return jsonify({"task": snapshot.get_task(task_id).model_dump(mode="json")})


@tasks_bp.route("/tasks/<task_id>/subtasks/<subtask_id>", methods=["DELETE"])
def remove_subtask(task_id: str, subtask_id: str):
    snapshot = _get_session().store.remove_subtask(task_id, subtask_id)
    return jsonify({"task": snapshot.get_task(task_id).model_dump(mode="json")})


@tasks_bp.route("/days/<day>/status", methods=["POST"])
def set_day_status(day: str):
    """Complete or recall every task due on a day.

    Expected JSON payload:
        {"status": "completed" | "active"}
    """
    parsed = _parse_day(day)
    if parsed is None:
        return jsonify({"error": f"Invalid date: {day}"}), 400
    data = request.get_json(silent=True) or {}
    snapshot = _get_session().store.set_all_status(parsed, data.get("status", ""))
    return jsonify(snapshot.to_dict())


@tasks_bp.route("/days/<day>", methods=["DELETE"])
def delete_day(day: str):
    """Delete every task due on a day, whatever its status."""
    parsed = _parse_day(day)
    if parsed is None:
        return jsonify({"error": f"Invalid date: {day}"}), 400
    snapshot = _get_session().store.delete_tasks_by_date(parsed)
    return jsonify(snapshot.to_dict())


@tasks_bp.route("/achievements", methods=["GET"])
def list_achievements():
    """Achievement catalogue with unlock flags."""
    unlocked = set(_get_session().store.snapshot().achievements)
    return jsonify(
        {
            "achievements": [
                {**a.to_dict(), "unlocked": a.key in unlocked} for a in ACHIEVEMENTS
            ]
        }
    )


@tasks_bp.route("/achievements/dismiss", methods=["POST"])
def dismiss_achievement():
    """Clear the achievement on display; the next queued one takes over."""
    snapshot = _get_session().store.clear_new_achievement()
    return jsonify({"newAchievement": snapshot.new_achievement})


@tasks_bp.route("/identity", methods=["POST"])
def sign_in():
    """Attach a user identity and hydrate from the remote store.

    Expected JSON payload:
        {"email": str, "name": str | null}
    """
    data = request.get_json(silent=True) or {}
    try:
        identity = UserIdentity(**data)
    except (ValidationError, TypeError):
        return jsonify({"error": "A non-empty email is required"}), 400

    hydrated = _get_session().sign_in(identity)
    logger.info(f"[API] Signed in {identity.email} (hydrated={hydrated})")
    return jsonify({"email": identity.email, "hydrated": hydrated})


@tasks_bp.route("/identity", methods=["DELETE"])
def sign_out():
    _get_session().sign_out()
    return jsonify({"status": "signed_out"})
