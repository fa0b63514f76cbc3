"""
Environment variable loading and parsing for Backend Presence.

- Loads .env from project root when available.
- Typed readers for float / int / bool variables with defaults; malformed values
  fall back to the default instead of crashing startup.
"""

from __future__ import annotations

import os
from pathlib import Path

# Project root: config is backend_presence/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_BACKEND_DIR = _CONFIG_DIR.parent
_ROOT = _BACKEND_DIR.parent
_ENV_PATH = _ROOT / ".env"

_TRUTHY = ("1", "true", "yes", "on")
_FALSY = ("0", "false", "no", "off")


def load_presence_env() -> None:
    """Load .env from project root. Safe to call multiple times; existing env wins."""
    from dotenv import load_dotenv

    load_dotenv(_ENV_PATH, override=False)


def env_str(name: str, default: str) -> str:
    return (os.getenv(name) or "").strip() or default


def env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_bool(name: str, default: bool) -> bool:
    """Parse 1/true/yes/on and 0/false/no/off; anything else keeps the default."""
    raw = (os.getenv(name) or "").strip().lower()
    if raw in _TRUTHY:
        return True
    if raw in _FALSY:
        return False
    return default


def get_database_url() -> str:
    """
    Resolve the persistence database URL.
    Order: DATABASE_URL > PRESENCE_DB_PATH (SQLite file) > presence.db.
    """
    load_presence_env()
    url = (os.getenv("DATABASE_URL") or "").strip()
    if url:
        return url
    path = (os.getenv("PRESENCE_DB_PATH") or "").strip() or "presence.db"
    return f"sqlite:///{path}"
