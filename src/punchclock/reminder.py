"""
Reminder scheduler: periodically decides whether to nudge the user to start
tracking.

A reminder fires only while reminders are enabled, no session is running,
local time is inside the active window, and at least ``interval_minutes``
have passed since the last reminder (or since the last session ended).
Notifications are fire-and-forget: failures are logged, never retried.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import sys
from datetime import datetime
from typing import Optional, Protocol

from .clock import Clock
from .models import Running, SessionEvent
from .session import SessionMachine
from .settings import ReminderConfig, Settings, SettingsGateway

logger = logging.getLogger("punchclock.reminder")

REMINDER_TITLE = "Time Tracker"
REMINDER_BODY = "You're not tracking time. Pick a project and start the timer."


def in_active_window(config: ReminderConfig, local_now: datetime) -> bool:
    """Weekday in active_weekdays and time-of-day in [active_start, active_end).

    end < start is an overnight window; start == end means all day.
    """
    if local_now.weekday() not in config.active_weekdays:
        return False
    now = local_now.time().replace(tzinfo=None)
    start, end = config.active_start, config.active_end
    if start == end:
        return True
    if start < end:
        return start <= now < end
    return now >= start or now < end


class Notifier(Protocol):
    async def notify(self, title: str, body: str) -> None: ...


class LogNotifier:
    """Notifier for headless runs: writes reminders to the log."""

    async def notify(self, title: str, body: str) -> None:
        logger.info(f"REMINDER: {title}: {body}")


class CommandNotifier:
    """Desktop notification via osascript (macOS) or notify-send (Linux)."""

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    def _command(self, title: str, body: str) -> list[str]:
        if sys.platform == "darwin":
            script = f'display notification "{body}" with title "{title}"'
            return ["osascript", "-e", script]
        if shutil.which("notify-send"):
            return ["notify-send", "--app-name=punchclock", title, body]
        raise RuntimeError("No desktop notification command available (need osascript or notify-send)")

    async def notify(self, title: str, body: str) -> None:
        proc = await asyncio.create_subprocess_exec(
            *self._command(title, body),
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            proc.kill()
            await proc.wait()
            raise
        if proc.returncode != 0:
            raise RuntimeError((stderr or b"").decode("utf-8", errors="replace").strip() or f"exit {proc.returncode}")


class ReminderScheduler:
    def __init__(
        self,
        machine: SessionMachine,
        settings: SettingsGateway,
        notifier: Notifier,
        clock: Optional[Clock] = None,
    ):
        self.machine = machine
        self.settings = settings
        self.notifier = notifier
        self.clock = clock or machine.clock
        self.last_fired_at: Optional[datetime] = None
        self._countdown_from: Optional[datetime] = None
        self._inflight: set[asyncio.Task] = set()

    def _reference(self) -> Optional[datetime]:
        return self.last_fired_at or self._countdown_from

    async def evaluate(self) -> bool:
        """One scheduler tick. Returns True if a notification was dispatched."""
        config = self.settings.current.reminder
        if not config.enabled:
            return False
        if isinstance(self.machine.state, Running):
            return False

        now = self.clock.now()
        if not in_active_window(config, self.clock.local(now)):
            return False

        reference = self._reference()
        if reference is not None and (now - reference).total_seconds() < config.interval_minutes * 60:
            return False

        self.last_fired_at = now
        self._countdown_from = None
        self._dispatch(REMINDER_TITLE, REMINDER_BODY)
        logger.info(f"Reminder fired (every {config.interval_minutes}m)")
        return True

    def _dispatch(self, title: str, body: str) -> None:
        task = asyncio.create_task(self._send(title, body))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _send(self, title: str, body: str) -> None:
        try:
            await self.notifier.notify(title, body)
        except asyncio.CancelledError:
            logger.info("Pending reminder cancelled")
            raise
        except Exception as e:
            logger.warning(f"Reminder notification failed: {e}")

    async def drain(self) -> None:
        """Wait for in-flight notifications to finish."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def cancel_pending(self) -> int:
        pending = [task for task in self._inflight if not task.done()]
        for task in pending:
            task.cancel()
        return len(pending)

    def on_session_event(self, event: SessionEvent) -> None:
        if event.kind in ("started", "switched"):
            self.last_fired_at = None
            self._countdown_from = None
        elif event.kind in ("stopped", "auto_stopped"):
            # Resuming idle restarts the interval instead of firing at once
            self.last_fired_at = None
            self._countdown_from = self.clock.now()

    def on_settings_changed(self, old: Settings, new: Settings) -> None:
        if old.reminder.enabled and not new.reminder.enabled:
            cancelled = self.cancel_pending()
            self.last_fired_at = None
            self._countdown_from = None
            logger.info(f"Reminders disabled ({cancelled} pending cancelled)")
