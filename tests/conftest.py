"""Pytest configuration and shared fixtures.

Usage Guide:
- For ORM model tests: use `db_session` and factories from tests.factories
- For anything that opens several sessions (locks, orchestrator, triggers):
  use `session_factory`, which is backed by a file database
- For API tests: build payloads with tests.fixtures.clever_responses
"""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine

from roster_sync.config import get_settings
from roster_sync.db.engine import configure_sqlite, make_session_factory
from roster_sync.db.models import Base

# -----------------------------------------------------------------------------
# Test Timeline Constants
# -----------------------------------------------------------------------------
SEP_01 = datetime(2025, 9, 1, 12, 0, 0, tzinfo=UTC)  # Monday
SEP_02 = datetime(2025, 9, 2, 12, 0, 0, tzinfo=UTC)  # Tuesday


# -----------------------------------------------------------------------------
# Settings
# -----------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    """Give every test fresh settings with dummy credentials."""
    monkeypatch.setenv("CLEVER_CLIENT_ID", "test-client")
    monkeypatch.setenv("CLEVER_CLIENT_SECRET", "test-secret")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# -----------------------------------------------------------------------------
# Database Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
async def test_engine():
    """Create an in-memory SQLite engine for tests.

    Each test gets a fresh database with all tables created.
    """
    engine = configure_sqlite(
        create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            echo=False,
        )
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(test_engine):
    """Create an async session with auto-rollback.

    Changes are rolled back after each test to ensure isolation.
    """
    session_factory = make_session_factory(test_engine)
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def file_engine(tmp_path):
    """File-backed engine where every session gets its own connection."""
    engine = configure_sqlite(
        create_async_engine(
            f"sqlite+aiosqlite:///{tmp_path / 'roster.db'}",
            echo=False,
            poolclass=pool.NullPool,
        )
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(file_engine):
    """Session factory over the file-backed engine."""
    return make_session_factory(file_engine)


# -----------------------------------------------------------------------------
# Utility Fixtures
# -----------------------------------------------------------------------------
class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    """Sleep that returns immediately and remembers each delay."""
    return RecordingSleep()


class FakeClock:
    """Settable clock for deterministic expiry and schedule tests."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> None:
        self.now = self.now + timedelta(**delta)


@pytest.fixture
def clock() -> FakeClock:
    """Clock starting at SEP_01 noon UTC."""
    return FakeClock(SEP_01)
