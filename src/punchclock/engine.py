"""
Engine: wires the store, settings gateway, session machine and the three
periodic evaluators together, and owns the APScheduler instance that drives
them.

Jobs:
- tick           every 1s   status surface refresh (read-only)
- idle_watchdog  every 30s  auto-stop after inactivity
- reminder       every 60s  "start tracking" notification
"""

import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from .clock import Clock, SystemClock
from .config import IDLE_CHECK_SECONDS, REMINDER_CHECK_SECONDS, TICK_SECONDS, Config
from .models import Project, SessionView, TimeEntry
from .reminder import CommandNotifier, LogNotifier, Notifier, ReminderScheduler
from .session import SessionListener, SessionMachine
from .settings import Settings, SettingsGateway
from .store import SessionStore
from .surface import MemorySink, StatusSink, StatusSurface, SurfaceIntent
from .watchdog import ActivityMonitor, ActivityProbe, IdleWatchdog

logger = logging.getLogger("punchclock.engine")


class TrackerEngine:
    def __init__(
        self,
        config: Config,
        clock: Optional[Clock] = None,
        notifier: Optional[Notifier] = None,
        sink: Optional[StatusSink] = None,
        probe: Optional[ActivityProbe] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.config = config
        self.clock = clock or SystemClock()
        self.store = SessionStore(config.db_path, self.clock)
        self.settings = SettingsGateway(self.store)
        self.machine = SessionMachine(self.store, self.clock)
        self.activity = ActivityMonitor(self.clock)
        self.sink = sink or MemorySink()
        self.surface = StatusSurface(self.machine, self.settings, self.sink)
        self.watchdog = IdleWatchdog(self.machine, self.settings, probe or self.activity.last_activity, self.clock)
        if notifier is None:
            notifier = CommandNotifier() if config.desktop_notifications else LogNotifier()
        self.reminder = ReminderScheduler(self.machine, self.settings, notifier, self.clock)
        self.scheduler = scheduler or AsyncIOScheduler()

        self.machine.subscribe(self.surface.on_session_event)
        self.machine.subscribe(self.reminder.on_session_event)
        self.settings.subscribe(self.surface.on_settings_changed)
        self.settings.subscribe(self.reminder.on_settings_changed)

    # ── Lifecycle ──────────────────────────────────────────────

    async def start(self) -> None:
        await self.store.init_tables(seed_defaults=self.config.seed_defaults)
        await self.settings.load()
        await self.machine.reconcile()
        await self.surface.set_projects(await self.store.list_project_summaries())
        if self.config.schedule_jobs:
            self._register_jobs()
            self.scheduler.start()
            logger.info("Scheduler started")

    def _register_jobs(self) -> None:
        jobs: list[tuple[str, int, Callable[[], Awaitable]]] = [
            ("tick", TICK_SECONDS, self.surface.refresh),
            ("idle_watchdog", IDLE_CHECK_SECONDS, self.watchdog.evaluate),
            ("reminder", REMINDER_CHECK_SECONDS, self.reminder.evaluate),
        ]
        for job_id, seconds, fn in jobs:
            self.scheduler.add_job(
                self._run_job,
                trigger=IntervalTrigger(seconds=seconds),
                args=[job_id, fn],
                id=job_id,
                name=job_id,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
            logger.debug(f"Registered job '{job_id}' every {seconds}s")

    async def _run_job(self, job_id: str, fn: Callable[[], Awaitable]) -> None:
        try:
            await fn()
        except Exception:
            # A failing evaluator must not take the scheduler down
            logger.exception(f"Job '{job_id}' failed")

    async def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=True)
            logger.info("Scheduler stopped")
        self.reminder.cancel_pending()
        await self.reminder.drain()

    # ── Session (UI collaborator interface) ────────────────────

    def get_session_state(self) -> SessionView:
        return self.machine.get_session_state()

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        return self.machine.subscribe(listener)

    async def start_session(self, project_id: int):
        return await self.machine.start(project_id)

    async def stop_session(self) -> Optional[TimeEntry]:
        return await self.machine.stop()

    async def switch_to(self, project_id: int):
        return await self.machine.switch_to(project_id)

    async def select_project(self, project_id: int):
        return await self.machine.select_project(project_id)

    async def handle_intent(self, intent: SurfaceIntent):
        return await self.surface.handle_intent(intent)

    async def update_settings(self, partial: dict) -> Settings:
        return await self.settings.update(partial)

    # ── Projects & entries ─────────────────────────────────────

    async def _sync_menu(self) -> None:
        await self.surface.set_projects(await self.store.list_project_summaries())

    async def list_projects(self) -> list[Project]:
        return await self.store.list_projects()

    async def create_project(self, name: str, color: str) -> Project:
        project = await self.store.create_project(name, color)
        await self._sync_menu()
        return project

    async def update_project(self, project_id: int, name: str, color: str) -> Project:
        project = await self.store.update_project(project_id, name, color)
        await self.machine.apply_project_edit(project)
        await self._sync_menu()
        return project

    async def delete_project(self, project_id: int) -> int:
        removed = await self.machine.delete_project(project_id)
        await self._sync_menu()
        return removed

    async def list_entries(self, limit: int = 50, project_id: Optional[int] = None) -> list[dict]:
        return await self.store.list_entries(limit=limit, project_id=project_id)

    async def update_entry(self, entry_id: int, project_id: int, start_time: datetime, end_time: datetime) -> TimeEntry:
        return await self.store.update_entry(entry_id, project_id, start_time, end_time)

    async def delete_entry(self, entry_id: int) -> None:
        await self.store.delete_entry(entry_id)

    async def totals(self) -> dict:
        """Closed time today and over the last 7 days, bucketed by local midnight."""
        local_now = self.clock.local(self.clock.now())
        midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
        return {
            "today": await self.store.total_seconds(midnight),
            "week": await self.store.total_seconds(midnight - timedelta(days=7)),
        }
