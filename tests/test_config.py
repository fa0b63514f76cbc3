"""
Tests for environment-driven settings.
"""

from __future__ import annotations

import pytest

from backend_presence.config import env, settings as settings_module
from backend_presence.config.settings import AppSettings, get_settings, reload_settings
from backend_presence.consensus.models import SessionSettings

_VARS = (
    "SIMILARITY_THRESHOLD",
    "MAX_ROOM_RADIUS",
    "PHYSICS_ENABLED",
    "LIVENESS_WINDOW_MS",
    "LIVENESS_CHALLENGE_ENABLED",
    "SCHEDULE_ENFORCED",
    "SCHEDULE_GRACE_MINUTES",
    "SCHEDULE_UTC_OFFSET_MINUTES",
    "DATABASE_URL",
    "PRESENCE_DB_PATH",
)


def _clear_env(monkeypatch):
    monkeypatch.setattr(env, "load_presence_env", lambda: None)
    monkeypatch.setattr(settings_module, "load_presence_env", lambda: None)
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults(monkeypatch):
    _clear_env(monkeypatch)
    s = get_settings()
    assert s.similarity_threshold == 10.0
    assert s.max_room_radius == 12.0
    assert s.physics_enabled is True
    assert s.liveness_window_ms == 15_000
    assert s.schedule_enforced is False
    assert s.schedule_utc_offset_minutes == 330
    assert s.database_url == "sqlite:///presence.db"
    assert s.session_defaults() == SessionSettings()


def test_env_overrides(monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.setenv("SIMILARITY_THRESHOLD", "35")
    monkeypatch.setenv("PHYSICS_ENABLED", "off")
    monkeypatch.setenv("LIVENESS_WINDOW_MS", "8000")
    monkeypatch.setenv("PRESENCE_DB_PATH", "/tmp/att.db")
    s = reload_settings()
    assert s.similarity_threshold == 35.0
    assert s.physics_enabled is False
    assert s.liveness_window_ms == 8000
    assert s.database_url == "sqlite:////tmp/att.db"
    assert s.session_defaults().physics_shield_enabled is False


def test_database_url_wins_over_path(monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@db/presence")
    monkeypatch.setenv("PRESENCE_DB_PATH", "/tmp/ignored.db")
    assert reload_settings().database_url == "postgresql://u:p@db/presence"


def test_malformed_values_keep_defaults(monkeypatch):
    _clear_env(monkeypatch)
    monkeypatch.setenv("SIMILARITY_THRESHOLD", "lots")
    monkeypatch.setenv("SCHEDULE_ENFORCED", "maybe")
    s = reload_settings()
    assert s.similarity_threshold == 10.0
    assert s.schedule_enforced is False


def test_settings_are_cached(monkeypatch):
    _clear_env(monkeypatch)
    first = get_settings()
    monkeypatch.setenv("SIMILARITY_THRESHOLD", "50")
    assert get_settings() is first
    assert reload_settings().similarity_threshold == 50.0


def test_app_settings_frozen():
    s = AppSettings()
    with pytest.raises(AttributeError):
        s.similarity_threshold = 5  # type: ignore[misc]
