"""
Shared test fixtures for the Funnel Recovery Engine.

This module provides common fixtures used across all test modules:
- FixedClock: a controllable UTC clock
- settings: EngineSettings pointing at a fresh SQLite file per test
- store: RecordStore with the schema created (aiosqlite)
- rng: seeded random.Random
- RecordingAdapter: fake delivery adapter that records calls and can fail
- engine: fully wired RecoveryEngine built from the fixtures above
- client: TestClient around create_app() with its own engine (sync tests only)

Usage:
    All fixtures are automatically available to any test in the tests/ directory.
"""

from __future__ import annotations

import asyncio
import os
import random
from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

# ---------------------------------------------------------------------------
# 1. Environment setup -- must run before any application imports
# ---------------------------------------------------------------------------

os.environ.setdefault("RECOVERY_DEV_MODE", "1")

# ---------------------------------------------------------------------------
# Application imports (after env vars are set)
# ---------------------------------------------------------------------------

from src.api import create_app  # noqa: E402
from src.config.settings import EngineSettings  # noqa: E402
from src.engine import build_engine  # noqa: E402
from src.services.delivery_adapters import DeliveryResult  # noqa: E402
from src.services.record_store import RecordStore  # noqa: E402

START = datetime(2026, 3, 2, 10, 0, tzinfo=UTC)


class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingAdapter:
    """Fake delivery adapter.

    Records every call. ``outcomes`` is consumed one entry per call; when it
    runs out, ``default`` is used. An entry may be a DeliveryResult, an
    exception instance (raised) or the string "hang" (sleeps past any timeout).
    """

    def __init__(self, outcomes: list | None = None, default: DeliveryResult | None = None) -> None:
        self.outcomes = list(outcomes or [])
        self.default = default or DeliveryResult.ok()
        self.calls: list[dict[str, str]] = []

    async def send(self, user_id: str, message: str, channel: str, experiment_id: str) -> DeliveryResult:
        self.calls.append(
            {"user_id": user_id, "message": message, "channel": channel, "experiment_id": experiment_id}
        )
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome == "hang":
            await asyncio.sleep(60)
        return outcome


# ---------------------------------------------------------------------------
# 2. Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture()
def rng() -> random.Random:
    return random.Random(1234)


@pytest.fixture()
def database_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'recovery.db'}"


@pytest.fixture()
def settings(database_url) -> EngineSettings:
    return EngineSettings(database_url=database_url, scheduler_enabled=False)


@pytest.fixture()
async def store(settings):
    """
    Provide a RecordStore on a fresh SQLite file with all tables created.

    The engine is disposed after the test finishes.
    """
    record_store = RecordStore.from_url(settings.database_url)
    await record_store.create_schema()
    yield record_store
    await record_store.dispose()


@pytest.fixture()
def adapter() -> RecordingAdapter:
    return RecordingAdapter()


@pytest.fixture()
def engine(settings, store, adapter, rng, clock):
    """A RecoveryEngine wired to the test store, fake adapter, seeded rng and fixed clock."""
    return build_engine(settings, store=store, adapter=adapter, rng=rng, clock=clock)


@pytest.fixture()
def client(settings, adapter, rng, clock):
    """
    TestClient for the full app, lifespan included.

    The engine is built here rather than from the ``store`` fixture so every
    database call runs on the TestClient's event loop.
    """
    app = create_app(engine=build_engine(settings, adapter=adapter, rng=rng, clock=clock))
    with TestClient(app) as test_client:
        yield test_client
