"""Punchclock: a personal time tracker's session and reminder engine.

One timer at a time, persisted in SQLite, with an idle auto-stop watchdog,
"start tracking" reminders, and a tray-style status surface.
"""

from .clock import ManualClock, SystemClock
from .config import Config
from .engine import TrackerEngine
from .errors import ClockSkewWarning, ConstraintError, NotFoundError, StorageError, TrackerError
from .models import Idle, Project, Running, SessionEvent, SessionView, TimeEntry
from .session import SessionMachine
from .settings import IdleConfig, ReminderConfig, Settings, SettingsGateway
from .store import SessionStore

__all__ = [
    "ClockSkewWarning",
    "Config",
    "ConstraintError",
    "Idle",
    "IdleConfig",
    "ManualClock",
    "NotFoundError",
    "Project",
    "ReminderConfig",
    "Running",
    "SessionEvent",
    "SessionMachine",
    "SessionStore",
    "SessionView",
    "Settings",
    "SettingsGateway",
    "StorageError",
    "SystemClock",
    "TimeEntry",
    "TrackerEngine",
    "TrackerError",
]
