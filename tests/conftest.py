import pytest

from punchclock.clock import ManualClock
from punchclock.session import SessionMachine
from punchclock.settings import SettingsGateway
from punchclock.store import SessionStore


@pytest.fixture
def clock():
    """Monday 2026-01-05 09:00 UTC, local time = UTC."""
    return ManualClock()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "punchclock.db"


@pytest.fixture
async def store(db_path, clock):
    store = SessionStore(db_path, clock)
    await store.init_tables()
    return store


@pytest.fixture
async def work(store):
    return await store.create_project("Work", "#3B82F6")


@pytest.fixture
async def personal(store):
    return await store.create_project("Personal", "#22C55E")


@pytest.fixture
async def settings(store):
    gateway = SettingsGateway(store)
    await gateway.load()
    return gateway


@pytest.fixture
async def machine(store, clock, work, personal):
    """Reconciled machine over a store holding Work and Personal."""
    machine = SessionMachine(store, clock)
    await machine.reconcile()
    return machine
