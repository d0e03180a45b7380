"""Domain records and the in-memory session state."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

DEFAULT_PROJECT_COLOR = "#3B82F6"


@dataclass(frozen=True)
class Project:
    id: int
    name: str
    color: str
    created_at: str


@dataclass(frozen=True)
class ProjectSummary:
    id: int
    name: str
    color: str


@dataclass(frozen=True)
class TimeEntry:
    id: int
    project_id: int
    start_time: datetime
    end_time: Optional[datetime]
    duration: Optional[int]  # whole seconds, set iff end_time is set
    created_at: str

    @property
    def is_open(self) -> bool:
        return self.end_time is None


@dataclass(frozen=True)
class OpenEntry(TimeEntry):
    """An entry joined with its project's display fields."""

    project_name: str = ""
    project_color: str = DEFAULT_PROJECT_COLOR


# ---- Session state ----
# Frozen variants: a transition swaps the whole object, so readers never see
# a half-updated {entry_id, project_id, start_time}.


@dataclass(frozen=True)
class Idle:
    selected_project_id: Optional[int] = None

    @property
    def is_running(self) -> bool:
        return False


@dataclass(frozen=True)
class Running:
    entry_id: int
    project_id: int
    start_time: datetime
    project_name: str = ""
    project_color: str = DEFAULT_PROJECT_COLOR

    @property
    def is_running(self) -> bool:
        return True


SessionState = Union[Idle, Running]


@dataclass(frozen=True)
class SessionView:
    """Snapshot returned by get_session_state(): state plus derived elapsed seconds."""

    state: SessionState
    elapsed: int = 0

    @property
    def is_running(self) -> bool:
        return self.state.is_running

    def to_dict(self) -> dict:
        state = self.state
        if isinstance(state, Running):
            return {
                "status": "running",
                "entry_id": state.entry_id,
                "project_id": state.project_id,
                "project_name": state.project_name,
                "project_color": state.project_color,
                "start_time": state.start_time.isoformat(),
                "elapsed": self.elapsed,
            }
        return {
            "status": "idle",
            "selected_project_id": state.selected_project_id,
            "elapsed": 0,
        }


@dataclass(frozen=True)
class SessionEvent:
    kind: str  # reconciled | started | stopped | switched | selected | auto_stopped
    state: SessionState
    entry: Optional[TimeEntry] = None  # closed entry for stop-like events
