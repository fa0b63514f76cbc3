"""
Pytest fixtures for Backend Presence tests.

Manual clock for deterministic liveness expiry, a registry/service wired with it,
a temporary SQLite attendance store, and a FastAPI TestClient over injected collaborators.
"""

from __future__ import annotations

from typing import Sequence

import pytest

from backend_presence.collaborators.base import PersistenceSink
from backend_presence.config.settings import AppSettings
from backend_presence.consensus.models import CorrectionEntry, VerdictRecord
from backend_presence.consensus.registry import SessionRegistry
from backend_presence.consensus.service import PresenceService


class ManualClock:
    """Monotonic clock the test advances by hand."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSink(PersistenceSink):
    """Persistence sink that keeps saved sessions in memory."""

    def __init__(self) -> None:
        self.saved: list[tuple[str, list[VerdictRecord], list[CorrectionEntry]]] = []

    def save(
        self,
        anchor_id: str,
        verdicts: Sequence[VerdictRecord],
        corrections: Sequence[CorrectionEntry],
    ) -> int:
        self.saved.append((anchor_id, list(verdicts), list(corrections)))
        return len(self.saved)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def registry(clock) -> SessionRegistry:
    return SessionRegistry(clock=clock)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def app_settings() -> AppSettings:
    return AppSettings(liveness_challenge_enabled=False, database_url="sqlite://")


@pytest.fixture
def service(registry, sink, app_settings) -> PresenceService:
    return PresenceService(registry=registry, sink=sink, settings=app_settings)


@pytest.fixture
def attendance_store(tmp_path):
    """SQLAlchemy attendance store on a temporary SQLite file, tables created."""
    from backend_presence.database import AttendanceStore

    store = AttendanceStore(f"sqlite:///{tmp_path / 'presence.db'}")
    store.init_db()
    yield store
    store.dispose()


@pytest.fixture
def client(registry, attendance_store, app_settings):
    """FastAPI TestClient over a service backed by the temporary store."""
    from fastapi.testclient import TestClient

    from backend_presence.api_server.server import create_app

    svc = PresenceService(registry=registry, sink=attendance_store, settings=app_settings)
    return TestClient(create_app(svc))


@pytest.fixture(autouse=True)
def _fresh_settings_cache():
    """Settings are cached process-wide; drop the cache around every test."""
    from backend_presence.config.settings import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
