"""
Session state machine: the single writer of "is a timer running, for which
project, since when".

States are Idle and Running. Every transition (start, stop, switch_to,
select_project, delete_project, reconcile) runs under one asyncio.Lock and
replaces the in-memory state only after the store call succeeded, so a
failed transition leaves the last-known-good state in place.

Subscribers are invoked while the lock is held, in transition order. They
must not call back into a transition.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from .clock import Clock, elapsed_seconds
from .errors import ConstraintError, NotFoundError, TrackerError
from .models import Idle, OpenEntry, Project, Running, SessionEvent, SessionState, SessionView, TimeEntry
from .store import SessionStore

logger = logging.getLogger("punchclock.session")

SessionListener = Callable[[SessionEvent], Any]


def _running_from(entry: OpenEntry) -> Running:
    # start_time comes from the store row, never from the caller's clock
    return Running(
        entry_id=entry.id,
        project_id=entry.project_id,
        start_time=entry.start_time,
        project_name=entry.project_name,
        project_color=entry.project_color,
    )


class SessionMachine:
    def __init__(self, store: SessionStore, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or store.clock
        self._state: SessionState = Idle()
        self._lock = asyncio.Lock()
        self._listeners: list[SessionListener] = []
        # Entry whose negative elapsed time was already reported
        self._skew_entry_id: Optional[int] = None

    # ---- Read side ----

    @property
    def state(self) -> SessionState:
        return self._state

    def _elapsed(self, state: SessionState) -> int:
        if not isinstance(state, Running):
            return 0
        now = self.clock.now()
        if now < state.start_time:
            # Report skew once per entry
            if self._skew_entry_id == state.entry_id:
                return 0
            self._skew_entry_id = state.entry_id
        return elapsed_seconds(state.start_time, now)

    def elapsed(self) -> int:
        return self._elapsed(self._state)

    def get_session_state(self) -> SessionView:
        state = self._state
        return SessionView(state=state, elapsed=self._elapsed(state))

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a sync or async listener for SessionEvents; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ---- Transitions ----

    async def reconcile(self) -> SessionState:
        """Re-derive state from the store. Run once on cold start."""
        async with self._lock:
            entry = await self.store.current_open_entry()
            if entry is not None:
                self._state = _running_from(entry)
                logger.info(
                    f"Resumed entry {entry.id} ({entry.project_name}), "
                    f"running for {self._elapsed(self._state)}s"
                )
            else:
                self._state = Idle(selected_project_id=await self._fallback_project_id())
                logger.info(f"No open entry; idle with project {self._state.selected_project_id}")
            await self._emit("reconciled")
            return self._state

    async def start(self, project_id: int) -> Running:
        async with self._lock:
            return await self._start_locked(project_id, "started")

    async def stop(self, reason: str = "user", entry_id: Optional[int] = None) -> Optional[TimeEntry]:
        """Close the running entry. Returns None when already idle.

        With entry_id, only that entry is stopped: if another session has
        replaced it by the time the lock is acquired, nothing happens.
        """
        async with self._lock:
            state = self._state
            if not isinstance(state, Running):
                logger.debug(f"stop({reason}) while idle, nothing to do")
                return None
            if entry_id is not None and state.entry_id != entry_id:
                logger.info(f"stop({reason}) for entry {entry_id} skipped, entry {state.entry_id} is running now")
                return None
            entry = await self.store.end(state.entry_id)
            self._state = Idle(selected_project_id=state.project_id)
            await self._emit("auto_stopped" if reason == "auto" else "stopped", entry)
            return entry

    async def switch_to(self, project_id: int) -> Running:
        """Stop the current entry and start one for project_id as one action.

        If the stop half fails nothing changes. From Idle this is a plain start.
        """
        async with self._lock:
            state = self._state
            if not isinstance(state, Running):
                return await self._start_locked(project_id, "started")

            if await self.store.get_project(project_id) is None:
                raise ConstraintError(f"Project {project_id} does not exist")

            closed = await self.store.end(state.entry_id)
            self._state = Idle(selected_project_id=state.project_id)
            try:
                return await self._start_locked(project_id, "switched", closed)
            except TrackerError:
                logger.warning(f"Switch to project {project_id} stopped entry {closed.id} but could not start")
                await self._emit("stopped", closed)
                raise

    async def select_project(self, project_id: int) -> Idle:
        """Pre-select a project while idle. No store effect."""
        async with self._lock:
            if isinstance(self._state, Running):
                raise ConstraintError("Cannot change the selected project while a timer is running")
            if await self.store.get_project(project_id) is None:
                raise NotFoundError(f"Project {project_id} does not exist")
            self._state = Idle(selected_project_id=project_id)
            await self._emit("selected")
            return self._state

    async def delete_project(self, project_id: int) -> int:
        """Delete a project and its entries, force-stopping a session running against it."""
        async with self._lock:
            state = self._state
            if isinstance(state, Running) and state.project_id == project_id:
                entry = await self.store.end(state.entry_id)
                self._state = Idle(selected_project_id=state.project_id)
                logger.info(f"Force-stopped entry {entry.id}: its project is being deleted")
                await self._emit("stopped", entry)

            removed = await self.store.delete_project(project_id)

            state = self._state
            if isinstance(state, Idle) and state.selected_project_id == project_id:
                self._state = Idle(selected_project_id=await self._fallback_project_id())
                await self._emit("selected")
            return removed

    async def apply_project_edit(self, project: Project) -> None:
        """Refresh the running session's display fields after a project rename/recolor."""
        async with self._lock:
            state = self._state
            if isinstance(state, Running) and state.project_id == project.id:
                self._state = Running(
                    entry_id=state.entry_id,
                    project_id=state.project_id,
                    start_time=state.start_time,
                    project_name=project.name,
                    project_color=project.color,
                )

    # ---- Internal ----

    async def _start_locked(self, project_id: int, kind: str, closed: Optional[TimeEntry] = None) -> Running:
        entry = await self.store.begin(project_id)
        self._state = _running_from(entry)
        await self._emit(kind, closed)
        return self._state

    async def _fallback_project_id(self) -> Optional[int]:
        """Most recently used project, else first alphabetically, else None."""
        last = await self.store.last_used_project_id()
        if last is not None:
            return last
        projects = await self.store.list_projects()
        return projects[0].id if projects else None

    async def _emit(self, kind: str, entry: Optional[TimeEntry] = None) -> None:
        event = SessionEvent(kind=kind, state=self._state, entry=entry)
        for listener in list(self._listeners):
            try:
                result = listener(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception(f"Session listener failed on '{kind}'")
