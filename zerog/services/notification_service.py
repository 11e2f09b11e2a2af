"""Desktop alerts for due missions.

A fired reminder becomes a native notification (terminal-notifier on macOS,
notify-send elsewhere) and a `reminder` event on the bus, so open UI
surfaces can show it even when the desktop notifier is missing.
"""

import logging
import subprocess
import sys
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from zerog.services import clock as clock_utils
from zerog.services.event_bus import EventBus

logger = logging.getLogger(__name__)

APP_NAME = "Zero-G Planner"
NOTIFIER_TIMEOUT_SECONDS = 5


@dataclass
class NotificationPayload:
    """One desktop notification."""

    title: str
    message: str
    task_id: str | None = None
    sound: bool = True


def _macos_command(payload: NotificationPayload) -> list[str]:
    cmd = ["terminal-notifier", "-title", payload.title, "-message", payload.message]
    # Same group replaces an older alert for the same mission.
    cmd += ["-group", f"zerog-{payload.task_id or 'general'}"]
    if payload.sound:
        cmd += ["-sound", "default"]
    return cmd


def _linux_command(payload: NotificationPayload) -> list[str]:
    return [
        "notify-send",
        f"--app-name={APP_NAME}",
        "--urgency=normal",
        payload.title,
        payload.message,
    ]


COMMAND_BUILDERS: dict[str, Callable[[NotificationPayload], list[str]]] = {
    "darwin": _macos_command,
}


class NotificationService:
    """Raises reminder alerts, at most one per task per cooldown window."""

    def __init__(
        self,
        event_bus: EventBus | None = None,
        enabled: bool = True,
        platform: str | None = None,
        cooldown_seconds: float = 5.0,
        clock: clock_utils.Clock = clock_utils.now,
    ):
        """Initialize the NotificationService.

        Args:
            event_bus: Bus that receives a `reminder` event per alert.
            enabled: Whether desktop notifications are sent at all.
            platform: Overrides sys.platform when choosing the notifier.
            cooldown_seconds: Minimum gap between alerts for one task.
            clock: Source of "now" for the cooldown.
        """
        self.enabled = enabled
        self._event_bus = event_bus
        self._build_command = COMMAND_BUILDERS.get(platform or sys.platform, _linux_command)
        self._cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._last_sent: dict[str, datetime] = {}

    def send_reminder(
        self,
        title: str,
        message: str,
        task_id: str | None = None,
        sound: bool = True,
    ) -> bool:
        """Alert that a mission is coming due.

        The bus event is published unconditionally; the desktop notification
        honours `enabled` and the per-task cooldown.

        Returns:
            True if the desktop notification went out.
        """
        payload = NotificationPayload(
            title=f"Mission due: {title}", message=message, task_id=task_id, sound=sound
        )
        if self._event_bus is not None:
            self._event_bus.emit(
                "reminder",
                {"task_id": task_id, "title": payload.title, "message": message},
            )

        if not self.enabled or self._cooling_down(task_id):
            return False

        sent = self._run_notifier(payload)
        if sent and task_id:
            self._last_sent[task_id] = self._clock()
        return sent

    def reset_cooldowns(self) -> None:
        self._last_sent.clear()

    def _cooling_down(self, task_id: str | None) -> bool:
        if not task_id or task_id not in self._last_sent:
            return False
        elapsed = (self._clock() - self._last_sent[task_id]).total_seconds()
        return elapsed < self._cooldown_seconds

    def _run_notifier(self, payload: NotificationPayload) -> bool:
        cmd = self._build_command(payload)
        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, timeout=NOTIFIER_TIMEOUT_SECONDS
            )
        except FileNotFoundError:
            logger.warning(f"{cmd[0]} not found; desktop notifications unavailable")
            return False
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.warning(f"{cmd[0]} failed: {e}")
            return False

        if result.returncode != 0:
            logger.warning(f"{cmd[0]} exited {result.returncode}: {result.stderr.strip()}")
            return False
        logger.debug(f"Reminder shown: {payload.title}")
        return True
