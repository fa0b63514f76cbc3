"""
Configuration management for Backend Presence.

Loads and validates settings from environment variables and an optional .env
file. Exposes a single source of truth for all service configuration.
"""

from backend_presence.config.settings import AppSettings, get_settings, reload_settings  # noqa: F401

__all__ = ["AppSettings", "get_settings", "reload_settings"]
