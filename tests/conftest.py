"""Pytest configuration and shared fixtures."""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime

import pytest

from src.core import change_feed, clock_gate, db_client
from src.core.change_feed import ChangeFeed
from src.core.config import settings
from src.domain.user import Identity
from tests.unit.mocks import FrozenClock


@pytest.fixture(autouse=True)
def fresh_change_feed(monkeypatch: pytest.MonkeyPatch) -> ChangeFeed:
    """Give every test its own in-process change feed, never touching Redis."""
    feed = ChangeFeed(redis=None)
    monkeypatch.setattr(change_feed, "_change_feed", feed)
    return feed


@pytest.fixture
async def db(tmp_path, monkeypatch: pytest.MonkeyPatch) -> AsyncGenerator[str]:
    """Provide a fresh SQLite database with every collection created."""
    db_path = str(tmp_path / "cohortsync-test.db")
    monkeypatch.setattr(settings, "sqlite_db_path", db_path)
    await db_client.init_db()
    yield db_path
    await db_client.close_connection()


@pytest.fixture
def frozen_clock(monkeypatch: pytest.MonkeyPatch) -> FrozenClock:
    """Freeze wall-clock time at 2024-01-05 12:00 UTC for services and sessions."""
    clock = FrozenClock(datetime(2024, 1, 5, 12, 0, tzinfo=UTC))
    monkeypatch.setattr(clock_gate, "utc_now", clock)
    return clock


@pytest.fixture
def alice() -> Identity:
    return Identity(id="user-alice", display_name="Alice", email="alice@test.local")


@pytest.fixture
def bob() -> Identity:
    return Identity(id="user-bob", display_name="Bob")


@pytest.fixture
def carol() -> Identity:
    """Identity without a display name."""
    return Identity(id="user-carol")
