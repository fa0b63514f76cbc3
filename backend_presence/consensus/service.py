"""
Presence service: the operations the engine exposes to transports.

Wires the session registry, decision engine and injected collaborators (scheduling
gate, enrollment provider, persistence sink) together. Anchor ids are normalized
(trimmed, lower-cased) here so every caller addresses sessions the same way.
"""

from __future__ import annotations

import random
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Iterable, Sequence

from backend_presence.collaborators.base import EnrollmentProvider, PersistenceSink, SchedulingGate
from backend_presence.collaborators.schedule_gate import AllowAllGate
from backend_presence.config.settings import AppSettings, get_settings
from backend_presence.consensus.decision import DecisionEngine, apply_corrections, review_list
from backend_presence.consensus.liveness import LivenessChallenge, LivenessWindow
from backend_presence.consensus.models import (
    Correction,
    FingerprintVector,
    SessionSettings,
    VerdictRecord,
)
from backend_presence.consensus.registry import Session, SessionRegistry, SessionSummary
from backend_presence.core.exceptions import InputError, SessionFinalizing, StateError
from backend_presence.presence_logging import bind_session, get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class EvidenceAck:
    liveness_window_open: bool
    question: str | None = None


@dataclass(frozen=True)
class LivenessAck:
    question: str | None
    expires_in_ms: int


@dataclass(frozen=True)
class FinalizeResult:
    anchor_id: str
    verdicts: list[VerdictRecord]

    @property
    def review(self) -> list[VerdictRecord]:
        return review_list(self.verdicts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "anchor_id": self.anchor_id,
            "verdicts": [v.to_dict() for v in self.verdicts],
            "review_list": [v.to_dict() for v in self.review],
        }


def normalize_anchor(anchor_id: str) -> str:
    anchor = (anchor_id or "").strip().lower()
    if not anchor:
        raise InputError("anchor_id must be non-empty")
    return anchor


class PresenceService:
    def __init__(
        self,
        registry: SessionRegistry | None = None,
        decision_engine: DecisionEngine | None = None,
        schedule_gate: SchedulingGate | None = None,
        enrollment: EnrollmentProvider | None = None,
        sink: PersistenceSink | None = None,
        settings: AppSettings | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.registry = registry or SessionRegistry()
        self.decision_engine = decision_engine or DecisionEngine()
        self.schedule_gate = schedule_gate or AllowAllGate()
        self.enrollment = enrollment
        self.sink = sink
        self._rng = rng
        self._defaults_lock = threading.Lock()
        self._defaults = self.settings.session_defaults()

    # -------------------------------------------------------------------------
    # Process-wide defaults (admin)
    # -------------------------------------------------------------------------

    def default_session_settings(self) -> SessionSettings:
        with self._defaults_lock:
            return self._defaults

    def update_default_threshold(self, threshold: float) -> SessionSettings:
        """Change the default threshold for sessions opened from now on."""
        if not 0 <= threshold <= 100:
            raise InputError("threshold must be within 0..100")
        with self._defaults_lock:
            self._defaults = replace(self._defaults, similarity_threshold=float(threshold))
            updated = self._defaults
        logger.info("default_threshold_updated", threshold=threshold)
        return updated

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def open_session(
        self,
        anchor_id: str,
        seed_fingerprint: FingerprintVector,
        settings: SessionSettings | None = None,
        now: datetime | None = None,
    ) -> Session:
        anchor = normalize_anchor(anchor_id)
        self.schedule_gate.check(anchor, now)
        return self.registry.open(anchor, seed_fingerprint, settings or self.default_session_settings())

    def trigger_liveness(self, anchor_id: str, window_ms: int | None = None) -> LivenessAck:
        session = self.registry.get(normalize_anchor(anchor_id))
        duration = window_ms if window_ms is not None else self.settings.liveness_window_ms
        challenge = (
            LivenessChallenge.arithmetic(self._rng)
            if self.settings.liveness_challenge_enabled
            else None
        )
        window = self.registry.liveness.trigger(session, duration, challenge)
        return LivenessAck(question=window.question, expires_in_ms=int(duration))

    def submit_evidence(
        self,
        anchor_id: str,
        participant_id: str,
        fingerprint: FingerprintVector,
        motion_sample: float | None = None,
        roll_no: str | None = None,
    ) -> EvidenceAck:
        window: LivenessWindow | None = self.registry.submit_evidence(
            normalize_anchor(anchor_id),
            participant_id,
            fingerprint,
            motion_sample,
            roll_no,
        )
        if window is None:
            return EvidenceAck(liveness_window_open=False)
        return EvidenceAck(liveness_window_open=True, question=window.question)

    def submit_liveness_proof(
        self,
        anchor_id: str,
        participant_id: str,
        answer: str | None = None,
    ) -> bool:
        session = self.registry.get(normalize_anchor(anchor_id))
        return self.registry.liveness.submit_proof(session, (participant_id or "").strip(), answer)

    def discover_session(self, candidate: FingerprintVector) -> str:
        fallback = self.default_session_settings().similarity_threshold
        return self.registry.discover(candidate, fallback).anchor_id

    def finalize_session(
        self,
        anchor_id: str,
        enrolled: Sequence[str] | None = None,
    ) -> FinalizeResult:
        """
        Freeze the session and compute verdicts. Later calls return the same verdicts.

        enrolled defaults to the enrollment provider's roster, then to everyone
        who submitted evidence.
        """
        anchor = normalize_anchor(anchor_id)
        roster = enrolled
        if roster is None and self.enrollment is not None:
            roster = self.enrollment.participants_for(anchor)

        session, snapshot = self.registry.begin_finalize(anchor)
        if snapshot is None:
            with session.lock:
                verdicts = session.verdicts
            if verdicts is None:
                raise SessionFinalizing(f"Finalization of anchor {anchor} is in progress")
            return FinalizeResult(anchor_id=anchor, verdicts=list(verdicts))

        try:
            verdicts = self.decision_engine.finalize(snapshot, roster)
        except Exception:
            self.registry.abort_finalize(session)
            raise
        with session.lock:
            session.verdicts = verdicts
        return FinalizeResult(anchor_id=anchor, verdicts=list(verdicts))

    def commit_session(
        self,
        anchor_id: str,
        corrections: Iterable[Correction] = (),
    ) -> int | None:
        """
        Apply human corrections, hand verdicts to the persistence sink, tear down.

        Returns the sink's record id (None when no sink is configured). Only one commit
        per session runs; a concurrent second one gets StateError. A failed save leaves
        the session finalized so the commit can be retried.
        """
        anchor = normalize_anchor(anchor_id)
        log = bind_session(anchor)
        session = self.registry.get(anchor)
        with session.lock:
            session.ensure_active()
            verdicts = session.verdicts
            if verdicts is None:
                raise StateError(f"Session for anchor {anchor} has not been finalized")
            if session.committing:
                raise StateError(f"Session for anchor {anchor} is already being committed")
            session.committing = True
        try:
            final, entries = apply_corrections(verdicts, corrections)
            record_id = None
            if self.sink is not None:
                record_id = self.sink.save(anchor, final, entries)
            else:
                log.warning("attendance_not_persisted", reason="no persistence sink configured")
        except Exception:
            with session.lock:
                session.committing = False
            raise
        self.registry.close_if_current(session)
        log.info("session_committed", verdicts=len(final), corrections=len(entries))
        return record_id

    def close_session(self, anchor_id: str) -> None:
        self.registry.close(normalize_anchor(anchor_id))

    def live_sessions(self) -> list[SessionSummary]:
        return self.registry.summaries()
