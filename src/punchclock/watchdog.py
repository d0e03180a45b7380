"""Idle watchdog: auto-stops a running session after user inactivity."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from .clock import Clock, SystemClock
from .errors import TrackerError
from .models import Running
from .session import SessionMachine
from .settings import SettingsGateway

logger = logging.getLogger("punchclock.watchdog")

# Returns the monotonic timestamp of the last user activity.
ActivityProbe = Callable[[], float]


class ActivityMonitor:
    """Default probe. Hosts call touch() on user input."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or SystemClock()
        self._last = self.clock.monotonic()

    def touch(self) -> None:
        self._last = max(self._last, self.clock.monotonic())

    def last_activity(self) -> float:
        return self._last


def probe_from_idle_seconds(idle_seconds: Callable[[], float], clock: Clock) -> ActivityProbe:
    """Adapt an OS primitive reporting "seconds since last input" into an ActivityProbe."""

    def probe() -> float:
        return clock.monotonic() - idle_seconds()

    return probe


class IdleWatchdog:
    """Evaluated on a fixed cadence; never writes to the store except through SessionMachine.stop()."""

    def __init__(
        self,
        machine: SessionMachine,
        settings: SettingsGateway,
        probe: ActivityProbe,
        clock: Optional[Clock] = None,
    ):
        self.machine = machine
        self.settings = settings
        self.probe = probe
        self.clock = clock or machine.clock
        # Set once stop() was requested for the current idle episode
        self._episode_activity: Optional[float] = None
        self._episode_entry_id: Optional[int] = None

    @property
    def fired_this_episode(self) -> bool:
        return self._episode_activity is not None

    def _clear_episode(self) -> None:
        self._episode_activity = None
        self._episode_entry_id = None

    async def evaluate(self) -> bool:
        """One watchdog tick. Returns True if an auto-stop closed the idle entry."""
        config = self.settings.current.idle
        if not config.enabled:
            return False

        state = self.machine.state
        if not isinstance(state, Running):
            return False

        try:
            last_activity = self.probe()
        except Exception as e:
            # Fail open: a broken probe must never stop a timer
            logger.warning(f"Activity probe failed, treating user as active: {e}")
            return False

        if self._episode_activity is not None:
            if last_activity > self._episode_activity or state.entry_id != self._episode_entry_id:
                self._clear_episode()
            else:
                return False

        idle_for = self.clock.monotonic() - last_activity
        if idle_for < config.timeout_minutes * 60:
            return False

        self._episode_activity = last_activity
        self._episode_entry_id = state.entry_id
        logger.info(f"Idle for {int(idle_for)}s (limit {config.timeout_minutes}m), auto-stopping entry {state.entry_id}")
        try:
            # Guarded by entry id: a session started meanwhile keeps running
            stopped = await self.machine.stop(reason="auto", entry_id=state.entry_id)
        except TrackerError as e:
            logger.error(f"Auto-stop of entry {state.entry_id} failed: {e}")
            return False
        return stopped is not None
