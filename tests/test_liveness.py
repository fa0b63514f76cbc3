"""
Tests for the liveness coordinator: lazily-expiring challenge windows and proofs.
"""

from __future__ import annotations

import random
import re

import pytest

from backend_presence.consensus.liveness import LivenessChallenge, LivenessState
from backend_presence.core.exceptions import (
    InputError,
    InvalidProof,
    NoActiveSession,
    SessionFinalizing,
    StateError,
    WindowClosed,
)

ROOM_FP = {"ap-hall": -42.0, "ap-lab": -55.0, "ap-lib": -70.0, "ap-cafe": -81.0}


@pytest.fixture
def session(registry):
    s = registry.open("room-101", ROOM_FP)
    registry.submit_evidence("room-101", "stu-1", ROOM_FP, 0.2)
    return s


def test_idle_until_triggered(registry, session):
    assert registry.liveness.state(session) is LivenessState.IDLE
    with pytest.raises(WindowClosed):
        registry.liveness.submit_proof(session, "stu-1")
    assert session.evidence["stu-1"].liveness_confirmed is False


def test_proof_accepted_while_open(registry, clock, session):
    registry.liveness.trigger(session, 15_000)
    assert registry.liveness.state(session) is LivenessState.CHALLENGE_OPEN
    clock.advance(14.9)
    assert registry.liveness.submit_proof(session, "stu-1") is True
    assert session.evidence["stu-1"].liveness_confirmed is True


def test_proof_after_expiry_rejected_without_explicit_close(registry, clock, session):
    registry.liveness.trigger(session, 15_000)
    clock.advance(15.0)
    assert registry.liveness.is_open(session) is False
    with pytest.raises(WindowClosed):
        registry.liveness.submit_proof(session, "stu-1")
    assert session.evidence["stu-1"].liveness_confirmed is False


def test_retrigger_resets_expiry(registry, clock, session):
    registry.liveness.trigger(session, 10_000)
    clock.advance(8)
    registry.liveness.trigger(session, 10_000)
    clock.advance(8)
    assert registry.liveness.is_open(session) is True
    clock.advance(2)
    assert registry.liveness.is_open(session) is False


def test_resubmission_is_idempotent(registry, session):
    registry.liveness.trigger(session, 5_000)
    assert registry.liveness.submit_proof(session, "stu-1") is True
    assert registry.liveness.submit_proof(session, "stu-1") is False
    assert session.evidence["stu-1"].liveness_confirmed is True


def test_participant_without_evidence_rejected(registry, session):
    registry.liveness.trigger(session, 5_000)
    with pytest.raises(StateError):
        registry.liveness.submit_proof(session, "stranger")


def test_challenge_answer_required(registry, session):
    challenge = LivenessChallenge(question="What is 4 + 3?", answer="7")
    window = registry.liveness.trigger(session, 5_000, challenge)
    assert window.question == "What is 4 + 3?"
    with pytest.raises(InvalidProof):
        registry.liveness.submit_proof(session, "stu-1", "8")
    with pytest.raises(InvalidProof):
        registry.liveness.submit_proof(session, "stu-1")
    assert registry.liveness.submit_proof(session, "stu-1", " 7 ") is True


def test_arithmetic_challenge_is_consistent():
    challenge = LivenessChallenge.arithmetic(random.Random(7))
    match = re.fullmatch(r"What is (\d) \+ (\d)\?", challenge.question)
    assert match is not None
    assert int(challenge.answer) == int(match.group(1)) + int(match.group(2))
    assert challenge.accepts(challenge.answer)


@pytest.mark.parametrize("window_ms", [0, -5, 600_001])
def test_invalid_window_duration(registry, session, window_ms):
    with pytest.raises(InputError):
        registry.liveness.trigger(session, window_ms)


def test_no_trigger_or_proof_after_finalize_begins(registry, session):
    registry.liveness.trigger(session, 5_000)
    registry.begin_finalize("room-101")
    with pytest.raises(SessionFinalizing):
        registry.liveness.submit_proof(session, "stu-1")
    with pytest.raises(SessionFinalizing):
        registry.liveness.trigger(session, 5_000)


def test_stale_session_cannot_be_triggered(registry, session):
    registry.open("room-101", ROOM_FP)
    with pytest.raises(NoActiveSession):
        registry.liveness.trigger(session, 5_000)
