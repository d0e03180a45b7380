"""
Session store: the only reader/writer of persisted projects and time entries.

Backed by SQLite through aiosqlite. Each operation opens its own connection,
so a failed call leaves nothing half-written: uncommitted work is rolled back
when the connection closes. Nothing here retries.
"""

import logging
import re
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional

import aiosqlite

from .clock import Clock, SystemClock, duration_seconds, format_ts, parse_ts, round_to_second, to_utc
from .errors import ConstraintError, NotFoundError, StorageError
from .models import DEFAULT_PROJECT_COLOR, OpenEntry, Project, ProjectSummary, TimeEntry

logger = logging.getLogger("punchclock.store")

HEX_COLOR = re.compile(r"^#[0-9A-Fa-f]{6}$")

DEFAULT_PROJECTS = [
    ("Work", "#3B82F6"),
    ("Personal", "#22C55E"),
    ("Learning", "#F59E0B"),
    ("Health", "#EC4899"),
    ("Side Project", "#8B5CF6"),
]

_ENTRY_COLUMNS = "te.id, te.project_id, te.start_time, te.end_time, te.duration, te.created_at"


def _row_to_entry(row) -> TimeEntry:
    return TimeEntry(
        id=row["id"],
        project_id=row["project_id"],
        start_time=parse_ts(row["start_time"]),
        end_time=parse_ts(row["end_time"]) if row["end_time"] else None,
        duration=row["duration"],
        created_at=row["created_at"],
    )


def _row_to_open_entry(row) -> OpenEntry:
    return OpenEntry(
        id=row["id"],
        project_id=row["project_id"],
        start_time=parse_ts(row["start_time"]),
        end_time=None,
        duration=None,
        created_at=row["created_at"],
        project_name=row["project_name"],
        project_color=row["project_color"] or DEFAULT_PROJECT_COLOR,
    )


def _validate_project_fields(name: str, color: str) -> tuple[str, str]:
    name = (name or "").strip()
    if not name:
        raise ConstraintError("Project name must not be empty")
    if not HEX_COLOR.match(color or ""):
        raise ConstraintError(f"Invalid project color: {color!r} (expected #RRGGBB)")
    return name, color.upper()


class SessionStore:
    """Async CRUD over the ``projects`` / ``time_entries`` / ``settings`` tables."""

    def __init__(self, db_path: Path, clock: Optional[Clock] = None):
        self.db_path = Path(db_path)
        self.clock = clock or SystemClock()

    @asynccontextmanager
    async def _connect(self):
        """Open a connection; sqlite failures surface as StorageError (integrity ones as ConstraintError)."""
        try:
            async with aiosqlite.connect(self.db_path) as db:
                db.row_factory = aiosqlite.Row
                await db.execute("PRAGMA busy_timeout=5000")
                await db.execute("PRAGMA foreign_keys=ON")
                yield db
        except sqlite3.IntegrityError as e:
            logger.warning(f"Integrity violation: {e}")
            raise ConstraintError(str(e)) from e
        except sqlite3.Error as e:
            logger.error(f"Storage failure on {self.db_path}: {e}")
            raise StorageError(str(e)) from e

    # ── Schema ─────────────────────────────────────────────────

    async def init_tables(self, seed_defaults: bool = False) -> None:
        """Create tables and indexes. Safe to run on every start."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        async with self._connect() as db:
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute("""
                CREATE TABLE IF NOT EXISTS projects (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    color TEXT DEFAULT '#3B82F6',
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS time_entries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
                    start_time DATETIME NOT NULL,
                    end_time DATETIME,
                    duration INTEGER,
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """)
            await db.execute("""
                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)
            await self._close_extra_open_entries(db)
            await db.execute("""
                CREATE UNIQUE INDEX IF NOT EXISTS idx_time_entries_single_open
                ON time_entries((end_time IS NULL)) WHERE end_time IS NULL
            """)
            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_time_entries_project
                ON time_entries(project_id, start_time DESC)
            """)
            await db.commit()

        if seed_defaults:
            await self.seed_default_projects()
        logger.info(f"Store ready at {self.db_path}")

    async def seed_default_projects(self) -> int:
        """Insert the starter projects into an empty database. Returns how many were added."""
        async with self._connect() as db:
            cursor = await db.execute("SELECT COUNT(*) FROM projects")
            if (await cursor.fetchone())[0] > 0:
                return 0
            stamp = format_ts(self.clock.now())
            await db.executemany(
                "INSERT INTO projects (name, color, created_at) VALUES (?, ?, ?)",
                [(name, color, stamp) for name, color in DEFAULT_PROJECTS],
            )
            await db.commit()
        logger.info(f"Seeded {len(DEFAULT_PROJECTS)} default projects")
        return len(DEFAULT_PROJECTS)

    async def _close_extra_open_entries(self, db: aiosqlite.Connection) -> None:
        # Databases written before the single-open index may hold several open
        # rows. Keep the newest open; close each older one at the start of the next.
        cursor = await db.execute(
            "SELECT id, start_time FROM time_entries WHERE end_time IS NULL ORDER BY start_time DESC, id DESC"
        )
        rows = await cursor.fetchall()
        for newer, older in zip(rows, rows[1:]):
            end = parse_ts(newer["start_time"])
            duration = duration_seconds(parse_ts(older["start_time"]), end)
            await db.execute(
                "UPDATE time_entries SET end_time = ?, duration = ? WHERE id = ?",
                (format_ts(end), duration, older["id"]),
            )
            logger.warning(f"Closed stale open entry {older['id']} ({duration}s)")

    # ── Session operations ─────────────────────────────────────

    async def begin(self, project_id: int) -> OpenEntry:
        """Open a new entry for project_id starting now."""
        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            cursor = await db.execute("SELECT name, color FROM projects WHERE id = ?", (project_id,))
            project = await cursor.fetchone()
            if project is None:
                raise ConstraintError(f"Project {project_id} does not exist")

            cursor = await db.execute("SELECT id FROM time_entries WHERE end_time IS NULL LIMIT 1")
            existing = await cursor.fetchone()
            if existing is not None:
                raise ConstraintError(f"Entry {existing['id']} is still running; stop it first")

            start = self.clock.now()
            stamp = format_ts(start)
            cursor = await db.execute(
                "INSERT INTO time_entries (project_id, start_time, created_at) VALUES (?, ?, ?)",
                (project_id, stamp, stamp),
            )
            entry_id = cursor.lastrowid
            await db.commit()

        logger.info(f"Began entry {entry_id} for project {project_id} at {stamp}")
        return OpenEntry(
            id=entry_id,
            project_id=project_id,
            start_time=parse_ts(stamp),
            end_time=None,
            duration=None,
            created_at=stamp,
            project_name=project["name"],
            project_color=project["color"] or DEFAULT_PROJECT_COLOR,
        )

    async def end(self, entry_id: int) -> TimeEntry:
        """Close the open entry entry_id; end_time and duration are written together."""
        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            cursor = await db.execute(
                "SELECT * FROM time_entries WHERE id = ? AND end_time IS NULL", (entry_id,)
            )
            row = await cursor.fetchone()
            if row is None:
                raise NotFoundError(f"No open entry with id {entry_id}")

            start = parse_ts(row["start_time"])
            end = self.clock.now()
            duration = duration_seconds(start, end)
            await db.execute(
                "UPDATE time_entries SET end_time = ?, duration = ? WHERE id = ?",
                (format_ts(end), duration, entry_id),
            )
            await db.commit()

        logger.info(f"Ended entry {entry_id} after {duration}s")
        return TimeEntry(
            id=entry_id,
            project_id=row["project_id"],
            start_time=start,
            end_time=end,
            duration=duration,
            created_at=row["created_at"],
        )

    async def current_open_entry(self) -> Optional[OpenEntry]:
        async with self._connect() as db:
            cursor = await db.execute(f"""
                SELECT {_ENTRY_COLUMNS}, p.name AS project_name, p.color AS project_color
                FROM time_entries te
                JOIN projects p ON te.project_id = p.id
                WHERE te.end_time IS NULL
                LIMIT 1
            """)
            row = await cursor.fetchone()
        return _row_to_open_entry(row) if row else None

    async def last_used_project_id(self) -> Optional[int]:
        """Project of the most recently started entry across all history."""
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT project_id FROM time_entries ORDER BY start_time DESC, id DESC LIMIT 1"
            )
            row = await cursor.fetchone()
        return row["project_id"] if row else None

    # ── Projects ───────────────────────────────────────────────

    async def list_projects(self) -> list[Project]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT id, name, color, created_at FROM projects ORDER BY name COLLATE NOCASE, id"
            )
            rows = await cursor.fetchall()
        return [Project(**dict(row)) for row in rows]

    async def list_project_summaries(self) -> list[ProjectSummary]:
        return [ProjectSummary(id=p.id, name=p.name, color=p.color) for p in await self.list_projects()]

    async def get_project(self, project_id: int) -> Optional[Project]:
        async with self._connect() as db:
            cursor = await db.execute(
                "SELECT id, name, color, created_at FROM projects WHERE id = ?", (project_id,)
            )
            row = await cursor.fetchone()
        return Project(**dict(row)) if row else None

    async def create_project(self, name: str, color: str = DEFAULT_PROJECT_COLOR) -> Project:
        name, color = _validate_project_fields(name, color)
        async with self._connect() as db:
            cursor = await db.execute(
                "INSERT INTO projects (name, color, created_at) VALUES (?, ?, ?)",
                (name, color, format_ts(self.clock.now())),
            )
            project_id = cursor.lastrowid
            await db.commit()
        logger.info(f"Created project {project_id} '{name}'")
        return await self.get_project(project_id)

    async def update_project(self, project_id: int, name: str, color: str) -> Project:
        name, color = _validate_project_fields(name, color)
        async with self._connect() as db:
            cursor = await db.execute(
                "UPDATE projects SET name = ?, color = ? WHERE id = ?", (name, color, project_id)
            )
            await db.commit()
            if cursor.rowcount == 0:
                raise NotFoundError(f"Project {project_id} does not exist")
        return await self.get_project(project_id)

    async def delete_project(self, project_id: int) -> int:
        """Delete a project and every entry referencing it. Returns the number of entries removed."""
        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            cursor = await db.execute("DELETE FROM time_entries WHERE project_id = ?", (project_id,))
            removed = cursor.rowcount
            cursor = await db.execute("DELETE FROM projects WHERE id = ?", (project_id,))
            if cursor.rowcount == 0:
                raise NotFoundError(f"Project {project_id} does not exist")
            await db.commit()
        logger.info(f"Deleted project {project_id} and {removed} entries")
        return removed

    # ── Entries ────────────────────────────────────────────────

    async def get_entry(self, entry_id: int) -> Optional[TimeEntry]:
        async with self._connect() as db:
            cursor = await db.execute(
                f"SELECT {_ENTRY_COLUMNS} FROM time_entries te WHERE te.id = ?", (entry_id,)
            )
            row = await cursor.fetchone()
        return _row_to_entry(row) if row else None

    async def list_entries(self, limit: int = 50, project_id: Optional[int] = None) -> list[dict]:
        """Closed entries, newest first, with project name/color."""
        query = f"""
            SELECT {_ENTRY_COLUMNS}, p.name AS project_name, p.color AS project_color
            FROM time_entries te
            JOIN projects p ON te.project_id = p.id
            WHERE te.end_time IS NOT NULL
        """
        params: list = []
        if project_id is not None:
            query += " AND te.project_id = ?"
            params.append(project_id)
        query += " ORDER BY te.start_time DESC LIMIT ?"
        params.append(limit)

        async with self._connect() as db:
            cursor = await db.execute(query, params)
            return [dict(row) for row in await cursor.fetchall()]

    async def update_entry(
        self, entry_id: int, project_id: int, start_time: datetime, end_time: datetime
    ) -> TimeEntry:
        """Rewrite a closed entry; duration is recomputed with the same rounding as end()."""
        start_time = round_to_second(to_utc(start_time))
        end_time = round_to_second(to_utc(end_time))
        if end_time < start_time:
            raise ConstraintError("Entry end time is before its start time")
        duration = duration_seconds(start_time, end_time)
        async with self._connect() as db:
            await db.execute("BEGIN IMMEDIATE")
            cursor = await db.execute("SELECT end_time FROM time_entries WHERE id = ?", (entry_id,))
            row = await cursor.fetchone()
            if row is None:
                raise NotFoundError(f"Entry {entry_id} does not exist")
            if row["end_time"] is None:
                raise ConstraintError(f"Entry {entry_id} is running; stop it before editing")
            cursor = await db.execute("SELECT 1 FROM projects WHERE id = ?", (project_id,))
            if await cursor.fetchone() is None:
                raise ConstraintError(f"Project {project_id} does not exist")

            await db.execute(
                """UPDATE time_entries
                   SET project_id = ?, start_time = ?, end_time = ?, duration = ?
                   WHERE id = ?""",
                (project_id, format_ts(start_time), format_ts(end_time), duration, entry_id),
            )
            await db.commit()
        return await self.get_entry(entry_id)

    async def delete_entry(self, entry_id: int) -> None:
        async with self._connect() as db:
            cursor = await db.execute("SELECT end_time FROM time_entries WHERE id = ?", (entry_id,))
            row = await cursor.fetchone()
            if row is None:
                raise NotFoundError(f"Entry {entry_id} does not exist")
            if row["end_time"] is None:
                raise ConstraintError(f"Entry {entry_id} is running; stop it before deleting")
            await db.execute("DELETE FROM time_entries WHERE id = ?", (entry_id,))
            await db.commit()

    async def total_seconds(self, since: datetime, project_id: Optional[int] = None) -> int:
        """Sum of closed durations for entries started at or after since."""
        query = "SELECT COALESCE(SUM(duration), 0) FROM time_entries WHERE end_time IS NOT NULL AND start_time >= ?"
        params: list = [format_ts(since)]
        if project_id is not None:
            query += " AND project_id = ?"
            params.append(project_id)
        async with self._connect() as db:
            cursor = await db.execute(query, params)
            return int((await cursor.fetchone())[0] or 0)

    # ── Settings ───────────────────────────────────────────────

    async def read_settings(self) -> dict[str, str]:
        async with self._connect() as db:
            cursor = await db.execute("SELECT key, value FROM settings")
            return {row["key"]: row["value"] for row in await cursor.fetchall()}

    async def write_settings(self, values: dict[str, str]) -> None:
        async with self._connect() as db:
            await db.executemany(
                """INSERT INTO settings (key, value) VALUES (?, ?)
                   ON CONFLICT(key) DO UPDATE SET value = excluded.value""",
                list(values.items()),
            )
            await db.commit()
