"""Shared fixtures: temporary database, fake clock and fake providers."""

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from lifesync.config import Settings
from lifesync.database import init_db, make_session_factory
from lifesync.services.runtime import SyncRuntime
from tests.fakes import FakeClock, FakeProvider


@pytest.fixture
def settings():
    return Settings(
        sync_debounce_seconds=5,
        scheduled_sync_interval_seconds=300,
        sync_timeout_seconds=10,
        stale_job_seconds=240,
        webhook_secret="whsec-test",
    )


@pytest.fixture
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'lifesync.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return make_session_factory(db_engine)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def eduplanr():
    return FakeProvider("eduplanr", ["sessions", "tasks"])


@pytest.fixture
def google():
    return FakeProvider("googleCalendar", ["events"])


@pytest.fixture
async def runtime(session_factory, eduplanr, google, clock, settings):
    runtime = SyncRuntime(
        session_factory,
        clients={"eduplanr": eduplanr, "googleCalendar": google},
        clock=clock,
        settings=settings,
    )
    yield runtime
    await runtime.shutdown()

