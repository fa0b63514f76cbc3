"""
Structured logging for Backend Presence.

JSON logs with timestamp, anchor_id, event_type, and verdict flags.
Use get_logger() in all modules for aggregation-friendly output.
"""

from backend_presence.presence_logging.logger import bind_session, get_logger

__all__ = ["bind_session", "get_logger"]
