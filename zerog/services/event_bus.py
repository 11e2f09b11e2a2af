"""EventBus for fanning store changes out to UI surfaces over SSE.

Every committed store mutation is republished here so independent surfaces
(dashboard, mission log, achievement toast) stay in step without polling.
Events: task_added, task_updated, task_completed, task_recalled,
task_removed, tasks_deleted, tasks_bulk_status, tasks_replaced,
achievement_unlocked, user_data_set, reminder, state
"""

import json
import logging
import queue
import threading
from collections import deque
from collections.abc import Callable, Generator, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel

logger = logging.getLogger(__name__)

KEEP_ALIVE = ": keep-alive\n\n"


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, dict):
        return {k: _to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_to_jsonable(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _event_number(event_id: str | None) -> int | None:
    try:
        return int(event_id) if event_id else None
    except ValueError:
        return None


@dataclass
class Event:
    """A planner event, as delivered to subscribers and SSE clients."""

    event_type: str
    data: dict
    id: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_sse(self) -> str:
        """Render as an SSE message block terminated by a blank line."""
        fields = [("event", self.event_type), ("data", json.dumps(self.data, default=str))]
        if self.id:
            fields.append(("id", self.id))
        return "".join(f"{name}: {value}\n" for name, value in fields if value) + "\n"


@dataclass
class _SSEClient:
    inbox: queue.Queue
    event_types: frozenset[str] | None = None

    def wants(self, event: Event) -> bool:
        return self.event_types is None or event.event_type in self.event_types


class EventBus:
    """Broadcasts planner events to in-process subscribers and SSE clients.

    Thread-safe: the store emits from request threads, reminders from timer
    threads. Each SSE client has its own bounded inbox; a client that falls
    behind is disconnected rather than allowed to stall the emitter.
    """

    def __init__(self, buffer_size: int = 100, client_queue_size: int = 100):
        """Initialize the EventBus.

        Args:
            buffer_size: Number of recent events kept for replay.
            client_queue_size: Per-client backlog before a slow client is dropped.
        """
        self._recent: deque[Event] = deque(maxlen=buffer_size)
        self._client_queue_size = client_queue_size
        self._callbacks: dict[str, list[Callable[[Event], None]]] = {}
        self._clients: list[_SSEClient] = []
        self._next_id = 1
        self._lock = threading.Lock()

    # =========================================================================
    # In-process subscribers
    # =========================================================================

    def subscribe(self, event_type: str, callback: Callable[[Event], None]) -> None:
        """Call `callback` for every event of `event_type` ("*" for all)."""
        with self._lock:
            self._callbacks.setdefault(event_type, []).append(callback)

    def unsubscribe(self, event_type: str, callback: Callable[[Event], None]) -> None:
        with self._lock:
            callbacks = self._callbacks.get(event_type, [])
            if callback in callbacks:
                callbacks.remove(callback)

    # =========================================================================
    # Publishing
    # =========================================================================

    def emit(self, event_type: str, data: dict) -> Event:
        """Publish an event.

        Models and datetimes in `data` are converted to JSON types first, so
        buffered events never hold references into the store.

        Returns:
            The published Event, with its sequence id.
        """
        with self._lock:
            event = Event(event_type=event_type, data=_to_jsonable(data), id=str(self._next_id))
            self._next_id += 1
            self._recent.append(event)
            callbacks = [*self._callbacks.get(event_type, ()), *self._callbacks.get("*", ())]
            self._deliver(event)

        # Outside the lock, so a callback may publish in turn.
        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                logger.exception(f"Event subscriber failed for {event_type}")

        return event

    def publish_store_event(self, data: dict) -> Event:
        """Republish a TaskStore event dict under its own event type."""
        payload = {k: v for k, v in data.items() if k != "event_type"}
        return self.emit(data.get("event_type", "state"), payload)

    def _deliver(self, event: Event) -> None:
        # Caller holds the lock.
        stalled = []
        for client in self._clients:
            if not client.wants(event):
                continue
            try:
                client.inbox.put_nowait(event)
            except queue.Full:
                stalled.append(client)
        for client in stalled:
            self._clients.remove(client)
            logger.info("Dropped slow SSE client")

    # =========================================================================
    # SSE clients
    # =========================================================================

    def get_sse_stream(
        self,
        include_buffer: bool = False,
        timeout: float = 30.0,
        initial: list[Event] | None = None,
        last_event_id: str | None = None,
        event_types: Iterable[str] | None = None,
    ) -> Generator[str, None, None]:
        """Open an SSE stream for a Flask streaming response.

        Args:
            include_buffer: Replay every buffered event before live ones.
            timeout: Seconds without events before a keep-alive comment.
            initial: Events sent before anything else (e.g. the current state).
            last_event_id: Replay only buffered events after this id
                (the browser's Last-Event-ID on reconnect).
            event_types: Only deliver these event types.

        Yields:
            SSE-formatted messages.
        """
        types = frozenset(event_types) if event_types else None
        client = _SSEClient(inbox=queue.Queue(maxsize=self._client_queue_size), event_types=types)

        with self._lock:
            self._clients.append(client)
            if include_buffer or last_event_id:
                replay = [e for e in self._since(list(self._recent), last_event_id) if client.wants(e)]
            else:
                replay = []

        try:
            for event in [*(initial or []), *replay]:
                yield event.to_sse()
            while True:
                try:
                    yield client.inbox.get(timeout=timeout).to_sse()
                except queue.Empty:
                    yield KEEP_ALIVE
        finally:
            with self._lock:
                if client in self._clients:
                    self._clients.remove(client)

    @property
    def subscriber_count(self) -> int:
        """Number of connected SSE clients."""
        with self._lock:
            return len(self._clients)

    # =========================================================================
    # Replay buffer
    # =========================================================================

    @staticmethod
    def _since(events: list[Event], since_id: str | None) -> list[Event]:
        since = _event_number(since_id)
        if since is None:
            return events
        return [e for e in events if (_event_number(e.id) or 0) > since]

    def get_buffered_events(
        self, since_id: str | None = None, event_type: str | None = None
    ) -> list[Event]:
        """Recent events after `since_id`, optionally of one type only.

        An unparseable `since_id` is ignored.
        """
        with self._lock:
            events = list(self._recent)
        events = self._since(events, since_id)
        if event_type:
            events = [e for e in events if e.event_type == event_type]
        return events

    def clear_buffer(self) -> None:
        with self._lock:
            self._recent.clear()
