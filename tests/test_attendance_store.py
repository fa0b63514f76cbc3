"""
Tests for the SQLAlchemy attendance store (temporary SQLite database).
"""

from __future__ import annotations

from backend_presence.consensus.models import CorrectionEntry, VerdictRecord, VerdictStatus
from backend_presence.database.attendance_store import room_integrity


def _verdict(pid: str, status: VerdictStatus, score: float = 50.0) -> VerdictRecord:
    return VerdictRecord(
        participant_id=pid,
        similarity_score=score,
        displacement=3.5,
        liveness_confirmed=status is VerdictStatus.PRESENT,
        flags=frozenset(),
        status=status,
        reason="",
        roll_no=pid.upper(),
    )


def test_room_integrity():
    assert room_integrity([]) == 100
    verdicts = [
        _verdict("a", VerdictStatus.PRESENT),
        _verdict("b", VerdictStatus.PRESENT),
        _verdict("c", VerdictStatus.PARTIAL),
        _verdict("d", VerdictStatus.ABSENT),
    ]
    assert room_integrity(verdicts) == 50


def test_save_and_list_history(attendance_store):
    verdicts = [_verdict("a", VerdictStatus.PRESENT), _verdict("b", VerdictStatus.ABSENT)]
    corrections = [CorrectionEntry("b", VerdictStatus.PARTIAL, VerdictStatus.ABSENT)]
    first = attendance_store.save("room-101", verdicts, corrections)
    second = attendance_store.save("room-202", verdicts[:1], [])
    assert second > first

    history = attendance_store.list_history()
    assert [h["anchor_id"] for h in history] == ["room-202", "room-101"]
    assert history[1]["room_integrity"] == 50
    assert history[1]["room_id"] == "Class_Main"
    assert history[1]["verdicts"][0]["participant_id"] == "a"
    assert history[1]["verdicts"][1]["status"] == "ABSENT"

    only = attendance_store.list_history(anchor_id="room-101")
    assert len(only) == 1 and only[0]["id"] == first

    logged = attendance_store.list_corrections()
    assert len(logged) == 1
    assert logged[0]["history_id"] == first
    assert logged[0]["old_status"] == "PARTIAL"
    assert logged[0]["new_status"] == "ABSENT"


def test_init_db_is_idempotent(attendance_store):
    attendance_store.init_db()
    assert attendance_store.list_history() == []
