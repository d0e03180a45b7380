"""
Tests for SessionStore: single-open invariant, durations, project/entry CRUD,
cascade deletes and settings persistence. Each test gets a temp-file DB.
"""

import sqlite3
from datetime import timedelta

import aiosqlite
import pytest

from punchclock.clock import format_ts
from punchclock.errors import ClockSkewWarning, ConstraintError, NotFoundError, StorageError
from punchclock.store import DEFAULT_PROJECTS, SessionStore


async def count_open(db_path) -> int:
    async with aiosqlite.connect(db_path) as db:
        cursor = await db.execute("SELECT COUNT(*) FROM time_entries WHERE end_time IS NULL")
        return (await cursor.fetchone())[0]


# ── begin / end ───────────────────────────────────────────────


class TestBeginEnd:
    async def test_begin_opens_entry_at_now(self, store, clock, work):
        entry = await store.begin(work.id)
        assert entry.is_open
        assert entry.project_id == work.id
        assert entry.start_time == clock.now()
        assert entry.project_name == "Work"

    async def test_begin_twice_is_rejected(self, store, db_path, work, personal):
        await store.begin(work.id)
        with pytest.raises(ConstraintError):
            await store.begin(personal.id)
        assert await count_open(db_path) == 1

    async def test_begin_unknown_project(self, store):
        with pytest.raises(ConstraintError):
            await store.begin(999)

    async def test_end_sets_duration(self, store, clock, work):
        entry = await store.begin(work.id)
        clock.advance(65)
        closed = await store.end(entry.id)
        assert closed.duration == 65
        assert closed.end_time == entry.start_time + timedelta(seconds=65)
        assert (await store.get_entry(entry.id)).duration == 65

    async def test_end_with_no_elapsed_time(self, store, work):
        entry = await store.begin(work.id)
        closed = await store.end(entry.id)
        assert closed.duration == 0

    async def test_end_twice_is_not_found(self, store, work):
        entry = await store.begin(work.id)
        await store.end(entry.id)
        with pytest.raises(NotFoundError):
            await store.end(entry.id)

    async def test_end_unknown_entry(self, store):
        with pytest.raises(NotFoundError):
            await store.end(42)

    async def test_wall_clock_moved_back_clamps_to_zero(self, store, clock, work):
        entry = await store.begin(work.id)
        clock.set(clock.now() - timedelta(minutes=10))
        with pytest.warns(ClockSkewWarning):
            closed = await store.end(entry.id)
        assert closed.duration == 0

    async def test_current_open_entry(self, store, work):
        assert await store.current_open_entry() is None
        entry = await store.begin(work.id)
        current = await store.current_open_entry()
        assert current.id == entry.id
        assert current.project_color == "#3B82F6"


class TestSingleOpenIndex:
    async def test_raw_second_open_insert_violates_index(self, store, db_path, work):
        await store.begin(work.id)
        async with aiosqlite.connect(db_path) as db:
            with pytest.raises(sqlite3.IntegrityError):
                await db.execute(
                    "INSERT INTO time_entries (project_id, start_time) VALUES (?, ?)",
                    (work.id, "2026-01-05 10:00:00"),
                )

    async def test_init_closes_stale_open_rows(self, db_path, clock):
        # Legacy database without the unique index, holding two open rows
        async with aiosqlite.connect(db_path) as db:
            await db.execute("CREATE TABLE projects (id INTEGER PRIMARY KEY AUTOINCREMENT, name TEXT NOT NULL, color TEXT, created_at DATETIME)")
            await db.execute("""
                CREATE TABLE time_entries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT, project_id INTEGER NOT NULL,
                    start_time DATETIME NOT NULL, end_time DATETIME, duration INTEGER, created_at DATETIME
                )
            """)
            await db.execute("INSERT INTO projects (name, color) VALUES ('Work', '#3B82F6')")
            await db.execute("INSERT INTO time_entries (project_id, start_time) VALUES (1, '2026-01-05 08:00:00')")
            await db.execute("INSERT INTO time_entries (project_id, start_time) VALUES (1, '2026-01-05 08:30:00')")
            await db.commit()

        store = SessionStore(db_path, clock)
        await store.init_tables()

        assert await count_open(db_path) == 1
        older = await store.get_entry(1)
        assert older.duration == 1800
        assert format_ts(older.end_time) == "2026-01-05 08:30:00"
        assert (await store.current_open_entry()).id == 2


# ── Projects ──────────────────────────────────────────────────


class TestProjects:
    async def test_list_is_alphabetical(self, store):
        for name in ("beta", "Alpha", "gamma"):
            await store.create_project(name, "#000000")
        assert [p.name for p in await store.list_projects()] == ["Alpha", "beta", "gamma"]

    async def test_color_is_validated_and_uppercased(self, store):
        project = await store.create_project("Reading", "#ff5733")
        assert project.color == "#FF5733"
        with pytest.raises(ConstraintError):
            await store.create_project("Bad", "red")

    async def test_empty_name_rejected(self, store):
        with pytest.raises(ConstraintError):
            await store.create_project("   ", "#000000")

    async def test_update(self, store, work):
        updated = await store.update_project(work.id, "Client work", "#123456")
        assert updated.name == "Client work"
        with pytest.raises(NotFoundError):
            await store.update_project(999, "x", "#123456")

    async def test_delete_cascades_entries(self, store, clock, work, personal):
        for _ in range(3):
            entry = await store.begin(work.id)
            clock.advance(60)
            await store.end(entry.id)
        other = await store.begin(personal.id)
        await store.end(other.id)

        removed = await store.delete_project(work.id)

        assert removed == 3
        assert await store.list_entries(project_id=work.id) == []
        assert len(await store.list_entries()) == 1
        assert await store.get_project(work.id) is None

    async def test_delete_unknown_project(self, store):
        with pytest.raises(NotFoundError):
            await store.delete_project(999)

    async def test_last_used_project(self, store, clock, work, personal):
        assert await store.last_used_project_id() is None
        entry = await store.begin(personal.id)
        await store.end(entry.id)
        clock.advance(10)
        entry = await store.begin(work.id)
        await store.end(entry.id)
        assert await store.last_used_project_id() == work.id

    async def test_seed_only_on_empty_database(self, store):
        assert await store.seed_default_projects() == len(DEFAULT_PROJECTS)
        assert await store.seed_default_projects() == 0
        assert len(await store.list_projects()) == len(DEFAULT_PROJECTS)


# ── Entries ───────────────────────────────────────────────────


class TestEntries:
    async def test_list_excludes_running_entry(self, store, work):
        closed = await store.begin(work.id)
        await store.end(closed.id)
        await store.begin(work.id)
        entries = await store.list_entries()
        assert [e["id"] for e in entries] == [closed.id]
        assert entries[0]["project_name"] == "Work"

    async def test_edit_rounds_to_nearest_second(self, store, clock, work, personal):
        entry = await store.begin(work.id)
        await store.end(entry.id)
        start = clock.now() + timedelta(milliseconds=400)
        end = start + timedelta(seconds=90, milliseconds=200)

        edited = await store.update_entry(entry.id, personal.id, start, end)

        assert edited.project_id == personal.id
        assert edited.duration == 91
        assert (edited.end_time - edited.start_time).total_seconds() == edited.duration

    async def test_edit_rejects_end_before_start(self, store, clock, work):
        entry = await store.begin(work.id)
        await store.end(entry.id)
        with pytest.raises(ConstraintError):
            await store.update_entry(entry.id, work.id, clock.now(), clock.now() - timedelta(minutes=1))

    async def test_running_entry_cannot_be_edited_or_deleted(self, store, clock, work):
        entry = await store.begin(work.id)
        with pytest.raises(ConstraintError):
            await store.update_entry(entry.id, work.id, clock.now(), clock.now())
        with pytest.raises(ConstraintError):
            await store.delete_entry(entry.id)

    async def test_edit_unknown_project(self, store, clock, work):
        entry = await store.begin(work.id)
        await store.end(entry.id)
        with pytest.raises(ConstraintError):
            await store.update_entry(entry.id, 999, clock.now(), clock.now())

    async def test_delete_entry(self, store, work):
        entry = await store.begin(work.id)
        await store.end(entry.id)
        await store.delete_entry(entry.id)
        assert await store.get_entry(entry.id) is None
        with pytest.raises(NotFoundError):
            await store.delete_entry(entry.id)

    async def test_total_seconds(self, store, clock, work, personal):
        since = clock.now()
        for project, seconds in ((work, 600), (personal, 300), (work, 60)):
            entry = await store.begin(project.id)
            clock.advance(seconds)
            await store.end(entry.id)
        await store.begin(work.id)  # open entries don't count
        assert await store.total_seconds(since) == 960
        assert await store.total_seconds(since, project_id=work.id) == 660
        assert await store.total_seconds(clock.now() + timedelta(hours=1)) == 0


# ── Settings & failures ───────────────────────────────────────


class TestSettingsTable:
    async def test_write_is_upsert(self, store):
        await store.write_settings({"a": "1", "b": "2"})
        await store.write_settings({"a": "3"})
        assert await store.read_settings() == {"a": "3", "b": "2"}


class TestStorageFailure:
    async def test_unopenable_database_is_storage_error(self, tmp_path, clock):
        store = SessionStore(tmp_path, clock)  # a directory, not a file
        with pytest.raises(StorageError):
            await store.list_projects()
