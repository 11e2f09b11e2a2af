"""Exception types for the planner core."""


class PlannerError(Exception):
    """Base class for planner errors."""


class TaskValidationError(PlannerError):
    """Raised when a mutation is rejected before any state changes."""


class TaskNotFoundError(PlannerError):
    """Raised when an operation that requires an existing task gets an unknown id."""

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class RemoteSyncError(PlannerError):
    """Raised inside the sync gateway for a failed remote call.

    Never escapes the gateway boundary.
    """

    def __init__(self, operation: str, status_code: int | None = None, detail: str = ""):
        self.operation = operation
        self.status_code = status_code
        self.detail = detail
        status = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"Remote {operation} failed{status}: {detail}".rstrip(": "))
