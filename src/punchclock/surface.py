"""
Status surface synchronizer: translates session state into the tray-style
indicator representation and routes the indicator's intents back into the
session machine.

The representation is a value object. Pushing only happens when it differs
from the last successful push, so redundant triggers (tick, settings change,
project edit) are free.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import asdict, dataclass
from typing import Any, Iterable, Optional, Protocol

from .models import ProjectSummary, Running, SessionEvent
from .session import SessionMachine
from .settings import Settings, SettingsGateway

logger = logging.getLogger("punchclock.surface")

NEUTRAL_COLOR = "#808080"
FALLBACK_COLOR = "#5BA4C4"

_HEX = re.compile(r"^#?([0-9A-Fa-f]{6})$")


def parse_hex_color(value: str) -> Optional[tuple[int, int, int]]:
    """'#FF5733' or 'FF5733' -> (255, 87, 51); None when malformed."""
    match = _HEX.match((value or "").strip())
    if not match:
        return None
    digits = match.group(1)
    return int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16)


def normalize_color(value: str) -> str:
    rgb = parse_hex_color(value)
    if rgb is None:
        return FALLBACK_COLOR
    return "#{:02X}{:02X}{:02X}".format(*rgb)


def format_tray_time(seconds: int) -> str:
    """Elapsed seconds as H:MM."""
    seconds = max(0, int(seconds))
    return f"{seconds // 3600}:{(seconds % 3600) // 60:02d}"


@dataclass(frozen=True)
class IconSpec:
    color: str
    letter: Optional[str] = None


@dataclass(frozen=True)
class MenuItem:
    project_id: int
    name: str
    color: str


@dataclass(frozen=True)
class MenuModel:
    items: tuple[MenuItem, ...]
    stop_enabled: bool


@dataclass(frozen=True)
class SurfaceUpdate:
    display_label: str
    icon: IconSpec
    menu: MenuModel

    def to_dict(self) -> dict:
        return asdict(self)


IDLE_ICON = IconSpec(color=NEUTRAL_COLOR, letter=None)


@dataclass(frozen=True)
class SurfaceIntent:
    action: str  # "start-project" | "stop"
    project_id: Optional[int] = None


def parse_menu_event(event_id: str) -> Optional[SurfaceIntent]:
    """Map indicator menu ids ('stop', 'project_<id>') to intents."""
    if event_id == "stop":
        return SurfaceIntent(action="stop")
    if event_id.startswith("project_"):
        try:
            return SurfaceIntent(action="start-project", project_id=int(event_id[len("project_"):]))
        except ValueError:
            return None
    return None


class StatusSink(Protocol):
    def push(self, update: SurfaceUpdate) -> Any: ...


class MemorySink:
    """Keeps the latest representation for pull-style consumers (HTTP surface, tests)."""

    def __init__(self):
        self.latest: Optional[SurfaceUpdate] = None
        self.pushes = 0

    def push(self, update: SurfaceUpdate) -> None:
        self.latest = update
        self.pushes += 1


def _initial(name: str) -> Optional[str]:
    first = (name or "").strip()[:1].upper()
    return first if first.isalnum() else None


class StatusSurface:
    def __init__(self, machine: SessionMachine, settings: SettingsGateway, sink: StatusSink):
        self.machine = machine
        self.settings = settings
        self.sink = sink
        self._projects: tuple[ProjectSummary, ...] = ()
        self._last: Optional[SurfaceUpdate] = None

    @property
    def last_pushed(self) -> Optional[SurfaceUpdate]:
        return self._last

    def build(self, settings: Optional[Settings] = None) -> SurfaceUpdate:
        settings = settings or self.settings.current
        state = self.machine.state
        menu = MenuModel(
            items=tuple(MenuItem(p.id, p.name, normalize_color(p.color)) for p in self._projects),
            stop_enabled=isinstance(state, Running),
        )
        if not isinstance(state, Running):
            return SurfaceUpdate(display_label="", icon=IDLE_ICON, menu=menu)

        name, color = state.project_name, state.project_color
        for project in self._projects:
            if project.id == state.project_id:
                name, color = project.name, project.color
                break
        label = format_tray_time(self.machine.elapsed()) if settings.show_timer_in_tray else ""
        return SurfaceUpdate(
            display_label=label,
            icon=IconSpec(color=normalize_color(color), letter=_initial(name)),
            menu=menu,
        )

    async def refresh(self, settings: Optional[Settings] = None) -> bool:
        """Push the current representation if it changed. Returns True when pushed."""
        update = self.build(settings)
        if update == self._last:
            return False
        try:
            result = self.sink.push(update)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            # _last stays stale so the next trigger retries the push
            logger.error(f"Status surface push failed: {e}")
            return False
        self._last = update
        return True

    async def set_projects(self, projects: Iterable[ProjectSummary]) -> bool:
        self._projects = tuple(projects)
        return await self.refresh()

    async def on_session_event(self, event: SessionEvent) -> None:
        await self.refresh()

    async def on_settings_changed(self, old: Settings, new: Settings) -> None:
        await self.refresh(new)

    async def handle_intent(self, intent: SurfaceIntent):
        """Route an indicator intent through the same transitions the UI uses."""
        if intent.action == "stop":
            return await self.machine.stop()
        if intent.action == "start-project" and intent.project_id is not None:
            # switch_to starts directly when idle
            return await self.machine.switch_to(intent.project_id)
        raise ValueError(f"Unknown surface intent: {intent}")
