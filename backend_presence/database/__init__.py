"""
Persistence layer: finalized attendance history and correction log.

SQLite by default via SQLAlchemy; set DATABASE_URL for PostgreSQL.
"""

from backend_presence.database.attendance_store import (
    AttendanceHistory,
    AttendanceStore,
    CorrectionLog,
)

__all__ = ["AttendanceHistory", "AttendanceStore", "CorrectionLog"]
