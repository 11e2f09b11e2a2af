"""SyncGateway - best-effort bridge between the TaskStore and the remote store.

The store never waits on the network. Committed mutations are turned into
commands on a bounded queue; a single worker thread owns every outbound
request. Failures are logged and swallowed: the local state that triggered a
push is already committed and stays that way.

Remote REST surface:
- GET    {base}/missions?userId={email}   -> {success, missions: [...]} or [...]
- POST   {base}/sync                       body {task, user: {email, name}}
- DELETE {base}/missions/{taskId}          404 counts as already deleted
- GET    {base}/user/{email}               profile (xp, streak, achievements)
- POST   {base}/leaderboard/sync           profile push
"""

import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from urllib.parse import quote

import requests
from pydantic import ValidationError

from zerog.errors import RemoteSyncError, TaskValidationError
from zerog.models.identity import UserIdentity
from zerog.models.snapshot import StoreSnapshot
from zerog.models.task import Task

logger = logging.getLogger(__name__)

# Local field name -> remote field name. Fields not listed keep their name.
REMOTE_FIELD_NAMES = {
    "id": "taskId",
    "created_at": "createdAt",
    "xp_awarded": "xpAwarded",
    "group_id": "groupId",
    "completion_note": "completionNote",
}
LOCAL_FIELD_NAMES = {remote: local for local, remote in REMOTE_FIELD_NAMES.items()}


class SyncOperation(str, Enum):
    """Commands handled by the worker."""

    UPSERT = "upsert"
    DELETE = "delete"
    PROFILE = "profile"


@dataclass
class SyncCommand:
    """A queued unit of outbound work."""

    operation: SyncOperation
    payload: dict = field(default_factory=dict)
    task_ids: list[str] = field(default_factory=list)
    queued_at: datetime = field(default_factory=datetime.now)


def task_to_remote(task: Task) -> dict:
    """Serialize a task for the remote store."""
    data = task.model_dump(mode="json")
    return {REMOTE_FIELD_NAMES.get(key, key): value for key, value in data.items()}


def task_from_remote(record: dict) -> Task:
    """Build a local Task from a remote record.

    Unknown remote bookkeeping fields (_id, userId, updatedAt, ...) are dropped.

    Raises:
        ValidationError: If the record does not describe a valid task.
    """
    data = {LOCAL_FIELD_NAMES.get(key, key): value for key, value in record.items()}
    if record.get("taskId") is not None:
        data["id"] = record["taskId"]
    # Remote UTC timestamps become naive local time in the Task validator.
    return Task.model_validate({k: v for k, v in data.items() if k in Task.model_fields})


class SyncGateway:
    """Fire-and-forget sync to the remote persistence service.

    Hydration is synchronous (it runs once, at session start). Pushes are
    enqueued and handled by a daemon worker thread, or by `drain()` in the
    calling thread when no worker is running.
    """

    def __init__(
        self,
        store,
        base_url: str = "http://localhost:3001/api",
        timeout: float = 10.0,
        queue_size: int = 1000,
        enabled: bool = True,
    ):
        """Initialize the gateway.

        Args:
            store: TaskStore that hydration writes into.
            base_url: Base URL of the remote REST service.
            timeout: Per-request timeout in seconds.
            queue_size: Maximum pending commands before pushes are dropped.
            enabled: If False, every operation is a logged no-op.
        """
        self._store = store
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.enabled = enabled

        self._queue: queue.Queue[SyncCommand] = queue.Queue(maxsize=queue_size)
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

        # Counters for diagnostics
        self.sent_count = 0
        self.failed_count = 0

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> bool:
        """Start the worker thread.

        Returns:
            True if the thread was started, False if already running.
        """
        if self._thread is not None and self._thread.is_alive():
            return False

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._worker, name="zerog-sync", daemon=True)
        self._thread.start()
        logger.info(f"Sync worker started ({self.base_url})")
        return True

    def stop(self, timeout: float = 5.0) -> bool:
        """Signal the worker to stop and wait for it.

        Commands still queued stay queued; call drain() to flush them.

        Returns:
            True if a running worker was stopped.
        """
        if self._thread is None or not self._thread.is_alive():
            return False

        self._stop_event.set()
        self._thread.join(timeout=timeout)
        self._thread = None
        logger.info("Sync worker stopped")
        return True

    def is_running(self) -> bool:
        """Check if the worker thread is running."""
        return self._thread is not None and self._thread.is_alive()

    @property
    def pending(self) -> int:
        """Number of commands waiting to be sent."""
        return self._queue.qsize()

    def drain(self) -> int:
        """Process every queued command in the calling thread.

        Returns:
            Number of commands processed.
        """
        processed = 0
        while True:
            try:
                command = self._queue.get_nowait()
            except queue.Empty:
                return processed
            try:
                self._process(command)
            finally:
                self._queue.task_done()
            processed += 1

    def _worker(self) -> None:
        """Background loop consuming the command queue."""
        while not self._stop_event.is_set():
            try:
                command = self._queue.get(timeout=0.5)
            except queue.Empty:
                continue
            try:
                self._process(command)
            finally:
                self._queue.task_done()

    # =========================================================================
    # Hydration (synchronous)
    # =========================================================================

    def hydrate(self, identity: UserIdentity | None) -> bool:
        """Replace the local task collection with the remote one.

        An empty remote list, or one with no valid missions, is treated as
        "no remote data" and leaves the local collection (demo tasks included) untouched. Failures are logged
        and never retried automatically.

        Returns:
            True if the store was replaced.
        """
        if not self.enabled or identity is None:
            return False

        try:
            response = requests.get(
                f"{self.base_url}/missions",
                params={"userId": identity.email},
                timeout=self.timeout,
            )
            self._raise_for_status("hydrate", response)
            data = response.json()
        except (requests.RequestException, RemoteSyncError, ValueError) as e:
            self.failed_count += 1
            logger.warning(f"Hydration failed for {identity.email}: {e}")
            return False

        records = data.get("missions") if isinstance(data, dict) else data
        if not isinstance(records, list):
            logger.warning(f"Hydration got an unexpected payload for {identity.email}")
            return False
        if not records:
            logger.info(f"No remote missions for {identity.email}; keeping local tasks")
            return False

        tasks = []
        for record in records:
            try:
                tasks.append(task_from_remote(record))
            except (ValidationError, AttributeError, TypeError) as e:
                logger.warning(f"Skipping invalid remote mission {record!r:.80}: {e}")
        if not tasks:
            logger.warning(
                f"No valid remote missions among {len(records)} for {identity.email}; "
                "keeping local tasks"
            )
            return False

        try:
            self._store.replace_all(tasks)
        except TaskValidationError as e:
            logger.warning(f"Hydration rejected by store: {e}")
            return False

        logger.info(f"Hydrated {len(tasks)} missions for {identity.email}")
        return True

    def hydrate_profile(self, identity: UserIdentity | None) -> bool:
        """Load XP, streak and achievements from the remote profile.

        Returns:
            True if the store's gamification state was replaced.
        """
        if not self.enabled or identity is None:
            return False

        try:
            response = requests.get(
                f"{self.base_url}/user/{quote(identity.email, safe='@')}",
                timeout=self.timeout,
            )
            if response.status_code == 404:
                logger.info(f"No remote profile for {identity.email}")
                return False
            self._raise_for_status("profile fetch", response)
            data = response.json()
        except (requests.RequestException, RemoteSyncError, ValueError) as e:
            self.failed_count += 1
            logger.warning(f"Profile hydration failed for {identity.email}: {e}")
            return False

        if not isinstance(data, dict):
            logger.warning(f"Profile hydration got an unexpected payload for {identity.email}")
            return False

        try:
            self._store.set_user_data(
                xp=data.get("xp") or 0,
                streak=data.get("streak") or 0,
                achievements=data.get("achievements") or [],
                last_completed_date=data.get("lastCompletedDate"),
            )
        except TaskValidationError as e:
            logger.warning(f"Profile hydration rejected by store: {e}")
            return False

        logger.info(f"Hydrated profile for {identity.email}: xp={data.get('xp') or 0}")
        return True

    # =========================================================================
    # Pushes (fire-and-forget)
    # =========================================================================

    def push_upsert(self, task: Task, identity: UserIdentity | None) -> bool:
        """Queue an upsert of the task's current state.

        Returns:
            True if the command was queued.
        """
        if identity is None:
            logger.warning(f"Upsert of {task.id} rejected: no user identity")
            return False
        return self._enqueue(
            SyncCommand(
                operation=SyncOperation.UPSERT,
                payload={"task": task_to_remote(task), "user": identity.to_remote()},
                task_ids=[task.id],
            )
        )

    def push_bulk_delete(self, tasks: list[Task]) -> bool:
        """Queue per-item deletes for the given tasks.

        Returns:
            True if the command was queued.
        """
        if not tasks:
            return False
        return self._enqueue(
            SyncCommand(operation=SyncOperation.DELETE, task_ids=[t.id for t in tasks])
        )

    def push_profile(self, snapshot: StoreSnapshot, identity: UserIdentity | None) -> bool:
        """Queue a leaderboard/profile push of the gamification fields.

        Returns:
            True if the command was queued.
        """
        if identity is None:
            logger.debug("Profile push skipped: no user identity")
            return False
        return self._enqueue(
            SyncCommand(
                operation=SyncOperation.PROFILE,
                payload={
                    "userId": identity.email,
                    "displayName": identity.name or identity.email,
                    "xp": snapshot.xp,
                    "level": snapshot.level,
                    "streak": snapshot.streak,
                    "achievements": list(snapshot.achievements),
                    "lastCompletedDate": snapshot.last_completed_date,
                },
            )
        )

    def _enqueue(self, command: SyncCommand) -> bool:
        if not self.enabled:
            logger.debug(f"Remote sync disabled, dropping {command.operation.value}")
            return False
        try:
            self._queue.put_nowait(command)
        except queue.Full:
            logger.warning(
                f"Sync queue full, dropping {command.operation.value} for {command.task_ids}"
            )
            return False
        return True

    # =========================================================================
    # Worker side
    # =========================================================================

    def _process(self, command: SyncCommand) -> None:
        """Execute one command. Never raises."""
        try:
            if command.operation == SyncOperation.UPSERT:
                self._send_upsert(command)
            elif command.operation == SyncOperation.DELETE:
                self._send_deletes(command)
            elif command.operation == SyncOperation.PROFILE:
                self._send_profile(command)
        except Exception as e:
            self.failed_count += 1
            logger.warning(f"Sync {command.operation.value} failed for {command.task_ids}: {e}")

    def _send_upsert(self, command: SyncCommand) -> None:
        response = requests.post(
            f"{self.base_url}/sync",
            json=command.payload,
            timeout=self.timeout,
        )
        self._raise_for_status("upsert", response)
        self.sent_count += 1
        logger.debug(f"Synced mission {command.task_ids[0]}")

    def _send_deletes(self, command: SyncCommand) -> None:
        # Sequential; one failed item does not stop the rest.
        for task_id in command.task_ids:
            try:
                response = requests.delete(
                    f"{self.base_url}/missions/{quote(task_id, safe='')}",
                    timeout=self.timeout,
                )
                if response.status_code != 404:
                    self._raise_for_status("delete", response)
                self.sent_count += 1
                logger.debug(f"Deleted remote mission {task_id}")
            except (requests.RequestException, RemoteSyncError) as e:
                self.failed_count += 1
                logger.warning(f"Remote delete of {task_id} failed: {e}")

    def _send_profile(self, command: SyncCommand) -> None:
        response = requests.post(
            f"{self.base_url}/leaderboard/sync",
            json=command.payload,
            timeout=self.timeout,
        )
        self._raise_for_status("profile sync", response)
        self.sent_count += 1
        logger.debug(f"Synced profile for {command.payload.get('userId')}")

    @staticmethod
    def _raise_for_status(operation: str, response: Any) -> None:
        if not 200 <= response.status_code < 300:
            raise RemoteSyncError(operation, response.status_code, (response.text or "")[:200])
