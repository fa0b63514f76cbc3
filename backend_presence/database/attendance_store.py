"""
SQLAlchemy-backed persistence sink for finalized sessions.

One attendance_history row per committed session (verdicts stored as JSON) and
one correction_log row per human override. Uses DATABASE_URL when set; otherwise
SQLite at PRESENCE_DB_PATH or presence.db.
"""

from __future__ import annotations

import json
import time
from contextlib import contextmanager
from typing import Any, Iterator, Sequence

from sqlalchemy import Column, Integer, String, Text, create_engine
from sqlalchemy.orm import Session as DbSession, declarative_base, sessionmaker

from backend_presence.collaborators.base import PersistenceSink
from backend_presence.config.env import get_database_url
from backend_presence.consensus.models import CorrectionEntry, VerdictRecord, VerdictStatus
from backend_presence.presence_logging import get_logger

logger = get_logger(__name__)

Base = declarative_base()

# -----------------------------------------------------------------------------
# SQLAlchemy models
# -----------------------------------------------------------------------------


class AttendanceHistory(Base):
    """One committed session: anchor, when, integrity summary and all verdicts."""

    __tablename__ = "attendance_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    anchor_id = Column(String(128), nullable=False, index=True)
    room_id = Column(String(128), nullable=True)
    timestamp = Column(Integer, nullable=False, index=True)  # Unix
    room_integrity = Column(Integer, nullable=False, default=100)
    verdicts_json = Column(Text, nullable=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "anchor_id": self.anchor_id,
            "room_id": self.room_id or "",
            "timestamp": self.timestamp,
            "room_integrity": self.room_integrity,
            "verdicts": json.loads(self.verdicts_json or "[]"),
        }


class CorrectionLog(Base):
    """Append-only audit of human overrides."""

    __tablename__ = "correction_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    history_id = Column(Integer, nullable=True, index=True)
    anchor_id = Column(String(128), nullable=False, index=True)
    participant_id = Column(String(128), nullable=False, index=True)
    old_status = Column(String(16), nullable=False)
    new_status = Column(String(16), nullable=False)
    timestamp = Column(Integer, nullable=False, index=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "history_id": self.history_id,
            "anchor_id": self.anchor_id,
            "participant_id": self.participant_id,
            "old_status": self.old_status,
            "new_status": self.new_status,
            "timestamp": self.timestamp,
        }


def room_integrity(verdicts: Sequence[VerdictRecord]) -> int:
    """Percentage of evaluated participants marked PRESENT (100 for an empty room)."""
    if not verdicts:
        return 100
    present = sum(1 for v in verdicts if v.status is VerdictStatus.PRESENT)
    return round(100 * present / len(verdicts))


class AttendanceStore(PersistenceSink):
    """Persistence sink over a SQLAlchemy engine."""

    def __init__(self, url: str | None = None, room_id: str = "Class_Main") -> None:
        self.url = url or get_database_url()
        self.room_id = room_id
        connect_args: dict[str, Any] = {}
        if self.url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self._engine = create_engine(self.url, connect_args=connect_args, pool_pre_ping=True)
        self._factory = sessionmaker(autocommit=False, autoflush=False, bind=self._engine)

    def init_db(self) -> None:
        """Create tables if they do not exist. Safe to call on every startup."""
        try:
            Base.metadata.create_all(bind=self._engine)
            logger.info("attendance_store_init_db", url=self.url.split("?")[0].split("//")[-1])
        except Exception as e:
            logger.exception("attendance_store_init_db_failed", error=str(e))
            raise

    @contextmanager
    def _session_scope(self) -> Iterator[DbSession]:
        """Single unit of work. Commits on success, rolls back on error."""
        session = self._factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def save(
        self,
        anchor_id: str,
        verdicts: Sequence[VerdictRecord],
        corrections: Sequence[CorrectionEntry],
    ) -> int:
        now = int(time.time())
        try:
            with self._session_scope() as session:
                history = AttendanceHistory(
                    anchor_id=anchor_id,
                    room_id=self.room_id,
                    timestamp=now,
                    room_integrity=room_integrity(verdicts),
                    verdicts_json=json.dumps([v.to_dict() for v in verdicts]),
                )
                session.add(history)
                session.flush()
                history_id = history.id
                for c in corrections:
                    session.add(
                        CorrectionLog(
                            history_id=history_id,
                            anchor_id=anchor_id,
                            participant_id=c.participant_id,
                            old_status=c.old_status.value,
                            new_status=c.new_status.value,
                            timestamp=now,
                        )
                    )
            logger.info(
                "attendance_saved",
                anchor_id=anchor_id,
                history_id=history_id,
                verdicts=len(verdicts),
                corrections=len(corrections),
            )
            return history_id
        except Exception as e:
            logger.exception("attendance_save_failed", anchor_id=anchor_id, error=str(e))
            raise

    def list_history(self, anchor_id: str | None = None, limit: int = 50) -> list[dict[str, Any]]:
        """Most recent committed sessions first."""
        with self._session_scope() as session:
            query = session.query(AttendanceHistory)
            if anchor_id:
                query = query.filter(AttendanceHistory.anchor_id == anchor_id)
            rows = query.order_by(AttendanceHistory.id.desc()).limit(limit).all()
            return [r.to_dict() for r in rows]

    def list_corrections(self, limit: int = 10) -> list[dict[str, Any]]:
        with self._session_scope() as session:
            rows = (
                session.query(CorrectionLog)
                .order_by(CorrectionLog.id.desc())
                .limit(limit)
                .all()
            )
            return [r.to_dict() for r in rows]

    def dispose(self) -> None:
        self._engine.dispose()
