"""
Application settings and environment configuration.

Responsibilities:
- Load configuration from environment variables and .env files.
- Provide defaults for every optional setting.
- Expose typed settings (calibration defaults, liveness window, schedule gate,
  database URL) for use across the consensus core, API server, and collaborators.
"""

from __future__ import annotations

import functools
from dataclasses import dataclass

from backend_presence.config.env import (
    env_bool,
    env_float,
    env_int,
    get_database_url,
    load_presence_env,
)
from backend_presence.consensus.models import (
    DEFAULT_MAX_DISPLACEMENT_RADIUS,
    DEFAULT_SIMILARITY_THRESHOLD,
    SessionSettings,
)

DEFAULT_LIVENESS_WINDOW_MS = 15_000
DEFAULT_SCHEDULE_GRACE_MINUTES = 10
# Campus local time is UTC+05:30
DEFAULT_SCHEDULE_UTC_OFFSET_MINUTES = 330


@dataclass(frozen=True)
class AppSettings:
    """Process-wide configuration, read once from the environment."""

    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    max_room_radius: float = DEFAULT_MAX_DISPLACEMENT_RADIUS
    physics_enabled: bool = True
    liveness_window_ms: int = DEFAULT_LIVENESS_WINDOW_MS
    liveness_challenge_enabled: bool = True
    schedule_enforced: bool = False
    schedule_grace_minutes: int = DEFAULT_SCHEDULE_GRACE_MINUTES
    schedule_utc_offset_minutes: int = DEFAULT_SCHEDULE_UTC_OFFSET_MINUTES
    database_url: str = "sqlite:///presence.db"

    def session_defaults(self) -> SessionSettings:
        """Calibration applied when an anchor opens a session without explicit settings."""
        return SessionSettings(
            similarity_threshold=self.similarity_threshold,
            max_displacement_radius=self.max_room_radius,
            physics_shield_enabled=self.physics_enabled,
        )


@functools.lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    """
    Return the current application settings.

    Cached after first call; use reload_settings() after changing the environment.
    """
    load_presence_env()
    return AppSettings(
        similarity_threshold=env_float("SIMILARITY_THRESHOLD", DEFAULT_SIMILARITY_THRESHOLD),
        max_room_radius=env_float("MAX_ROOM_RADIUS", DEFAULT_MAX_DISPLACEMENT_RADIUS),
        physics_enabled=env_bool("PHYSICS_ENABLED", True),
        liveness_window_ms=env_int("LIVENESS_WINDOW_MS", DEFAULT_LIVENESS_WINDOW_MS),
        liveness_challenge_enabled=env_bool("LIVENESS_CHALLENGE_ENABLED", True),
        schedule_enforced=env_bool("SCHEDULE_ENFORCED", False),
        schedule_grace_minutes=env_int("SCHEDULE_GRACE_MINUTES", DEFAULT_SCHEDULE_GRACE_MINUTES),
        schedule_utc_offset_minutes=env_int(
            "SCHEDULE_UTC_OFFSET_MINUTES", DEFAULT_SCHEDULE_UTC_OFFSET_MINUTES
        ),
        database_url=get_database_url(),
    )


def reload_settings() -> AppSettings:
    """Drop the cached settings and read the environment again."""
    get_settings.cache_clear()
    return get_settings()
