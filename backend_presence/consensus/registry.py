"""
Session registry: the set of live sessions, evidence accumulation, and discovery.

Concurrency contract:
- The anchor -> Session map is guarded by a short registry lock used only for
  lookups and swaps; it is never held while evidence is written or math runs.
- Each Session has its own lock serializing writes to its evidence and liveness
  window, so different anchors never contend.
- Closing or replacing a session marks the old object closed under its lock; any
  stale reference that tries to write afterwards gets NoActiveSession.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from backend_presence.consensus.liveness import LivenessCoordinator, LivenessWindow
from backend_presence.consensus.models import (
    EvidenceRecord,
    FingerprintVector,
    SessionSettings,
    VerdictRecord,
)
from backend_presence.consensus.similarity import similarity
from backend_presence.core.exceptions import (
    InputError,
    NoActiveSession,
    NotFoundError,
    SessionFinalizing,
)
from backend_presence.presence_logging import get_logger

logger = get_logger(__name__)


class Session:
    """One anchor's live session. Mutate only while holding ``lock``."""

    def __init__(
        self,
        anchor_id: str,
        seed_fingerprint: FingerprintVector,
        settings: SessionSettings,
        created_at: float,
    ) -> None:
        self.anchor_id = anchor_id
        self.seed_fingerprint: dict[str, float] = dict(seed_fingerprint)
        self.settings = settings
        self.created_at = created_at
        self.evidence: dict[str, EvidenceRecord] = {}
        self.liveness_window: LivenessWindow | None = None
        self.lock = threading.Lock()
        self.closed = False
        self.finalizing = False
        self.committing = False
        self.verdicts: list[VerdictRecord] | None = None

    def ensure_active(self) -> None:
        if self.closed:
            raise NoActiveSession(
                self.anchor_id, f"Session for anchor {self.anchor_id} was closed"
            )

    def ensure_writable(self) -> None:
        self.ensure_active()
        if self.finalizing:
            raise SessionFinalizing(
                f"Session for anchor {self.anchor_id} is being finalized"
            )

    def __repr__(self) -> str:
        return (
            f"Session(anchor_id={self.anchor_id!r}, participants={len(self.evidence)}, "
            f"closed={self.closed}, finalizing={self.finalizing})"
        )


@dataclass(frozen=True)
class SessionSnapshot:
    """Detached, read-only view of a session taken when finalization begins."""

    anchor_id: str
    seed_fingerprint: dict[str, float]
    settings: SessionSettings
    evidence: dict[str, EvidenceRecord]


@dataclass(frozen=True)
class SessionSummary:
    """Live overview row for one session."""

    anchor_id: str
    participant_count: int
    roll_numbers: list[str]
    liveness_open: bool
    finalizing: bool
    age_sec: float

    def to_dict(self) -> dict[str, object]:
        return {
            "anchor_id": self.anchor_id,
            "participant_count": self.participant_count,
            "roll_numbers": self.roll_numbers,
            "liveness_open": self.liveness_open,
            "finalizing": self.finalizing,
            "age_sec": round(self.age_sec, 1),
        }


def _clean_fingerprint(fingerprint: FingerprintVector | None, *, allow_empty: bool) -> dict[str, float]:
    if fingerprint is None:
        fingerprint = {}
    if not hasattr(fingerprint, "items"):
        raise InputError("fingerprint must be a mapping of access point -> signal strength")
    cleaned: dict[str, float] = {}
    for key, value in fingerprint.items():
        if not isinstance(key, str) or not key.strip():
            raise InputError("access point identifiers must be non-empty strings")
        try:
            reading = float(value)
        except (TypeError, ValueError):
            raise InputError(f"reading for {key!r} is not a number") from None
        if not math.isfinite(reading):
            raise InputError(f"reading for {key!r} is not finite")
        cleaned[key] = reading
    if not cleaned and not allow_empty:
        raise InputError("fingerprint must not be empty")
    return cleaned


class SessionRegistry:
    """Owns live sessions keyed by anchor id; injected rather than held as a global."""

    def __init__(
        self,
        liveness: LivenessCoordinator | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self.liveness = liveness or LivenessCoordinator(clock=clock)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def open(
        self,
        anchor_id: str,
        seed_fingerprint: FingerprintVector,
        settings: SessionSettings | None = None,
    ) -> Session:
        """Open a session for anchor_id, atomically replacing any existing one."""
        anchor_id = (anchor_id or "").strip()
        if not anchor_id:
            raise InputError("anchor_id must be non-empty")
        seed = _clean_fingerprint(seed_fingerprint, allow_empty=False)
        session = Session(anchor_id, seed, settings or SessionSettings(), self._clock())
        with self._lock:
            old = self._sessions.get(anchor_id)
            if old is not None:
                self._retire(old)
            self._sessions[anchor_id] = session
        logger.info(
            "session_opened",
            anchor_id=anchor_id,
            replaced=old is not None,
            access_points=len(seed),
            **session.settings.to_dict(),
        )
        return session

    def get(self, anchor_id: str) -> Session:
        with self._lock:
            session = self._sessions.get((anchor_id or "").strip())
        if session is None:
            raise NoActiveSession(anchor_id)
        return session

    def close(self, anchor_id: str) -> Session:
        """Remove and retire the anchor's session; NoActiveSession if there is none."""
        with self._lock:
            session = self._sessions.pop((anchor_id or "").strip(), None)
            if session is None:
                raise NoActiveSession(anchor_id)
            self._retire(session)
        logger.info(
            "session_closed",
            anchor_id=session.anchor_id,
            participants=len(session.evidence),
        )
        return session

    def close_if_current(self, session: Session) -> bool:
        """Close ``session`` only if it is still the anchor's live one."""
        with self._lock:
            if self._sessions.get(session.anchor_id) is not session:
                return False
            del self._sessions[session.anchor_id]
            self._retire(session)
        logger.info("session_closed", anchor_id=session.anchor_id, participants=len(session.evidence))
        return True

    @staticmethod
    def _retire(session: Session) -> None:
        with session.lock:
            session.closed = True

    def anchors(self) -> list[str]:
        with self._lock:
            return sorted(self._sessions)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    # -------------------------------------------------------------------------
    # Discovery and evidence
    # -------------------------------------------------------------------------

    def discover(
        self,
        candidate: FingerprintVector,
        fallback_threshold: float | None = None,
    ) -> Session:
        """
        Return the session whose seed best matches ``candidate``.

        A session qualifies when its score is at or above its own threshold.
        Anchors are visited in lexical order and a later one wins only on a strictly
        higher score, so ties go to the lexically first anchor.
        """
        with self._lock:
            sessions = [self._sessions[aid] for aid in sorted(self._sessions)]
        best: Session | None = None
        best_score = -1.0
        for session in sessions:
            score = similarity(candidate, session.seed_fingerprint)
            if score <= 0.0:
                continue
            threshold = session.settings.threshold_or(fallback_threshold)
            if score >= threshold and score > best_score:
                best = session
                best_score = score
        if best is None:
            raise NotFoundError("No session matches the candidate fingerprint")
        logger.info("session_discovered", anchor_id=best.anchor_id, score=round(best_score, 2))
        return best

    def submit_evidence(
        self,
        anchor_id: str,
        participant_id: str,
        fingerprint: FingerprintVector,
        motion_sample: float | None = None,
        roll_no: str | None = None,
    ) -> LivenessWindow | None:
        """
        Append a fingerprint (and optional motion sample) to the participant's record.

        Returns the currently open liveness window, or None when idle.
        """
        participant_id = (participant_id or "").strip()
        if not participant_id:
            raise InputError("participant_id must be non-empty")
        cleaned = _clean_fingerprint(fingerprint, allow_empty=True)
        motion = None
        if motion_sample is not None:
            motion = float(motion_sample)
            if not math.isfinite(motion):
                raise InputError("motion sample must be finite")
        session = self.get(anchor_id)
        with session.lock:
            session.ensure_writable()
            record = session.evidence.get(participant_id)
            if record is None:
                record = EvidenceRecord(participant_id=participant_id, roll_no=roll_no)
                session.evidence[participant_id] = record
            record.append(cleaned, motion)
            samples = len(record.fingerprint_history)
            window = self.liveness.open_window(session)
        logger.debug(
            "evidence_submitted",
            anchor_id=session.anchor_id,
            participant_id=participant_id,
            samples=samples,
            liveness_open=window is not None,
        )
        return window

    # -------------------------------------------------------------------------
    # Finalization support
    # -------------------------------------------------------------------------

    def begin_finalize(self, anchor_id: str) -> tuple[Session, SessionSnapshot | None]:
        """
        Freeze the session against further writes and snapshot its evidence.

        Returns (session, None) when finalization already began earlier; the caller
        then reuses the verdicts stored on the session.
        """
        session = self.get(anchor_id)
        with session.lock:
            session.ensure_active()
            if session.finalizing:
                return session, None
            session.finalizing = True
            snapshot = SessionSnapshot(
                anchor_id=session.anchor_id,
                seed_fingerprint=dict(session.seed_fingerprint),
                settings=session.settings,
                evidence={pid: rec.copy() for pid, rec in session.evidence.items()},
            )
        logger.info(
            "session_finalize_started",
            anchor_id=session.anchor_id,
            participants=len(snapshot.evidence),
        )
        return session, snapshot

    def abort_finalize(self, session: Session) -> None:
        """Reopen a session whose verdicts could not be computed, so finalize can be retried."""
        with session.lock:
            if session.verdicts is not None:
                return
            session.finalizing = False
        logger.warning("session_finalize_aborted", anchor_id=session.anchor_id)

    def summaries(self) -> list[SessionSummary]:
        with self._lock:
            sessions = [self._sessions[aid] for aid in sorted(self._sessions)]
        now = self._clock()
        out: list[SessionSummary] = []
        for session in sessions:
            with session.lock:
                records = list(session.evidence.values())
                finalizing = session.finalizing
            out.append(
                SessionSummary(
                    anchor_id=session.anchor_id,
                    participant_count=len(records),
                    roll_numbers=[r.roll_no or r.participant_id for r in records],
                    liveness_open=self.liveness.is_open(session),
                    finalizing=finalizing,
                    age_sec=max(0.0, now - session.created_at),
                )
            )
        return out
