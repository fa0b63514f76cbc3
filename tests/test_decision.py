"""
Tests for the decision engine: classification precedence, flags, fault isolation, overrides.
"""

from __future__ import annotations

import pytest

from backend_presence.consensus import displacement
from backend_presence.consensus.decision import (
    REASON_CLUSTER_REVIEW,
    DecisionEngine,
    apply_corrections,
    classify,
    overlap_ratio,
    review_list,
)
from backend_presence.consensus.models import (
    FLAG_CLUSTER_PEER_PREFIX,
    FLAG_CLUSTER_SUSPECT,
    FLAG_ENVIRONMENT_MISMATCH,
    FLAG_EVALUATION_FAULT,
    FLAG_HUMAN_OVERRIDE,
    FLAG_LIVENESS_UNCONFIRMED,
    FLAG_NO_EVIDENCE,
    FLAG_NOT_ENROLLED,
    FLAG_SHIELD_REJECTED,
    Correction,
    EvidenceRecord,
    SessionSettings,
    VerdictStatus,
)
from backend_presence.consensus.registry import SessionSnapshot
from backend_presence.core.exceptions import InputError

SEED = {"ap1": -40.0, "ap2": -55.0, "ap3": -63.0, "ap4": -70.0}


def _record(pid, fp=None, motion=(0.5,), live=False, roll_no=None) -> EvidenceRecord:
    rec = EvidenceRecord(participant_id=pid, motion_history=list(motion), roll_no=roll_no)
    if fp is not None:
        rec.fingerprint_history.append(dict(fp))
    rec.liveness_confirmed = live
    return rec


def _snapshot(*records, settings=None) -> SessionSnapshot:
    return SessionSnapshot(
        anchor_id="room-101",
        seed_fingerprint=dict(SEED),
        settings=settings or SessionSettings(),
        evidence={r.participant_id: r for r in records},
    )


# --- Classification precedence ---


def test_present_when_all_checks_pass():
    status, _ = classify(15, 10, True, shield_enabled=False, shield_valid=False, cluster_flagged=False)
    assert status is VerdictStatus.PRESENT


def test_absent_when_shield_rejects():
    status, reason = classify(
        15, 10, True, shield_enabled=True, shield_valid=False, cluster_flagged=False,
        shield_reason="obstructed",
    )
    assert status is VerdictStatus.ABSENT
    assert "displacement shield" in reason
    assert "obstructed" in reason


def test_shield_rejection_outranks_cluster_review():
    status, _ = classify(15, 10, True, shield_enabled=True, shield_valid=False, cluster_flagged=True)
    assert status is VerdictStatus.ABSENT


def test_cluster_flag_requires_review():
    status, reason = classify(15, 10, True, shield_enabled=True, shield_valid=True, cluster_flagged=True)
    assert status is VerdictStatus.PARTIAL
    assert reason == REASON_CLUSTER_REVIEW


@pytest.mark.parametrize(
    "score,live,expected",
    [
        (10.0, True, VerdictStatus.PRESENT),
        (6.0, True, VerdictStatus.PARTIAL),
        (6.0, False, VerdictStatus.PARTIAL),
        (15.0, False, VerdictStatus.PARTIAL),
        (5.0, True, VerdictStatus.ABSENT),
        (3.0, True, VerdictStatus.ABSENT),
        (0.0, False, VerdictStatus.ABSENT),
    ],
)
def test_score_bands(score, live, expected):
    status, _ = classify(score, 10, live, shield_enabled=False, shield_valid=True, cluster_flagged=False)
    assert status is expected


def test_overlap_ratio():
    assert overlap_ratio({"ap1": -40.0, "ap2": -50.0}, SEED) == pytest.approx(0.5)
    assert overlap_ratio({"other": -40.0}, SEED) == 0.0
    assert overlap_ratio(SEED, {}) == 0.0
    assert overlap_ratio(None, SEED) == 0.0


# --- Finalize over snapshots ---


def test_enrolled_without_evidence_is_absent():
    (verdict,) = DecisionEngine().finalize(_snapshot(), ["ghost"])
    assert verdict.status is VerdictStatus.ABSENT
    assert verdict.similarity_score == 0.0
    assert verdict.displacement == 0.0
    assert FLAG_NO_EVIDENCE in verdict.flags


def test_present_participant():
    snap = _snapshot(_record("stu-1", SEED, live=True, roll_no="R-1"))
    (verdict,) = DecisionEngine().finalize(snap, ["stu-1"])
    assert verdict.status is VerdictStatus.PRESENT
    assert verdict.similarity_score == 100.0
    assert verdict.displacement == 0.0
    assert verdict.liveness_confirmed is True
    assert verdict.roll_no == "R-1"
    assert verdict.flags == frozenset()


def test_displaced_participant_is_absent_with_shield_flag():
    # Uniformly 20 dB weaker: same shape (high cosine) but far away in signal space
    far = {k: v - 20.0 for k, v in SEED.items()}
    snap = _snapshot(_record("stu-1", far, live=True))
    (verdict,) = DecisionEngine().finalize(snap, ["stu-1"])
    assert verdict.similarity_score >= 10.0
    assert verdict.status is VerdictStatus.ABSENT
    assert FLAG_SHIELD_REJECTED in verdict.flags
    assert verdict.displacement == pytest.approx(20.0)
    assert "outside radius" in verdict.reason


def test_shield_disabled_ignores_displacement():
    far = {k: v - 20.0 for k, v in SEED.items()}
    settings = SessionSettings(physics_shield_enabled=False)
    (verdict,) = DecisionEngine().finalize(_snapshot(_record("stu-1", far, live=True), settings=settings))
    assert verdict.status is VerdictStatus.PRESENT
    assert verdict.displacement == 0.0


def test_environment_mismatch_flag():
    fp = {"ap1": -40.0, "x1": -50.0, "x2": -50.0, "x3": -50.0}
    (verdict,) = DecisionEngine().finalize(_snapshot(_record("stu-1", fp, live=True)))
    assert FLAG_ENVIRONMENT_MISMATCH in verdict.flags


def test_liveness_unconfirmed_is_partial():
    (verdict,) = DecisionEngine().finalize(_snapshot(_record("stu-1", SEED, live=False)))
    assert verdict.status is VerdictStatus.PARTIAL
    assert FLAG_LIVENESS_UNCONFIRMED in verdict.flags


def test_cluster_pair_needs_review():
    snap = _snapshot(
        _record("stu-1", SEED, motion=[0.0], live=True),
        _record("stu-2", SEED, motion=[0.001], live=True),
        _record("stu-3", SEED, motion=[0.4], live=True),
    )
    verdicts = {v.participant_id: v for v in DecisionEngine().finalize(snap)}
    for pid, peer in (("stu-1", "stu-2"), ("stu-2", "stu-1")):
        assert verdicts[pid].status is VerdictStatus.PARTIAL
        assert FLAG_CLUSTER_SUSPECT in verdicts[pid].flags
        assert f"{FLAG_CLUSTER_PEER_PREFIX}{peer}" in verdicts[pid].flags
    assert verdicts["stu-3"].status is VerdictStatus.PRESENT


def test_roster_order_and_unenrolled_extras():
    snap = _snapshot(
        _record("zed", SEED, live=True),
        _record("amy", SEED, live=True),
        _record("walk-in", SEED, live=True),
    )
    verdicts = DecisionEngine().finalize(snap, ["zed", "amy", "absentee"])
    assert [v.participant_id for v in verdicts] == ["zed", "amy", "absentee", "walk-in"]
    assert FLAG_NOT_ENROLLED in verdicts[-1].flags
    assert verdicts[2].status is VerdictStatus.ABSENT


def test_without_roster_everyone_with_evidence_is_evaluated():
    snap = _snapshot(_record("b", SEED, live=True), _record("a", SEED, live=True))
    assert [v.participant_id for v in DecisionEngine().finalize(snap)] == ["a", "b"]


def test_fault_in_one_participant_does_not_abort_others():
    engine = DecisionEngine()
    original = engine.evaluate_participant

    def flaky(pid, record, snapshot, clusters):
        if pid == "bad":
            raise ZeroDivisionError("boom")
        return original(pid, record, snapshot, clusters)

    engine.evaluate_participant = flaky
    snap = _snapshot(_record("bad", SEED, live=True), _record("good", SEED, live=True))
    verdicts = {v.participant_id: v for v in engine.finalize(snap)}
    assert verdicts["bad"].status is VerdictStatus.ABSENT
    assert FLAG_EVALUATION_FAULT in verdicts["bad"].flags
    assert verdicts["bad"].displacement == displacement.SENTINEL_DISPLACEMENT
    assert verdicts["good"].status is VerdictStatus.PRESENT


# --- Review list and human overrides ---


def test_review_list_excludes_present():
    snap = _snapshot(_record("ok", SEED, live=True), _record("meh", SEED, live=False))
    verdicts = DecisionEngine().finalize(snap)
    assert [v.participant_id for v in review_list(verdicts)] == ["meh"]


def test_apply_corrections():
    snap = _snapshot(_record("ok", SEED, live=True), _record("meh", SEED, live=False))
    verdicts = DecisionEngine().finalize(snap)
    final, entries = apply_corrections(
        verdicts,
        [
            Correction("meh", VerdictStatus.PRESENT),
            Correction("ok", VerdictStatus.PRESENT),
        ],
    )
    by_id = {v.participant_id: v for v in final}
    assert by_id["meh"].status is VerdictStatus.PRESENT
    assert FLAG_HUMAN_OVERRIDE in by_id["meh"].flags
    assert FLAG_HUMAN_OVERRIDE not in by_id["ok"].flags
    assert len(entries) == 1
    assert entries[0].old_status is VerdictStatus.PARTIAL
    assert entries[0].new_status is VerdictStatus.PRESENT
    # originals untouched
    assert {v.participant_id: v.status for v in verdicts}["meh"] is VerdictStatus.PARTIAL

    with pytest.raises(InputError):
        apply_corrections(verdicts, [Correction("nobody", VerdictStatus.ABSENT)])
