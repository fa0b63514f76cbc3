"""
Data models for the presence-consensus engine.

Fingerprints, per-session calibration, accumulated evidence, shield results and
verdicts. Verdicts are immutable once produced; a human override creates a new
record and a correction entry instead of mutating the old one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

# Access-point identifier -> signal strength (dBm, roughly -100..0)
FingerprintVector = Mapping[str, float]

DEFAULT_SIMILARITY_THRESHOLD = 10.0
DEFAULT_MAX_DISPLACEMENT_RADIUS = 12.0


class VerdictStatus(str, Enum):
    PRESENT = "PRESENT"
    PARTIAL = "PARTIAL"
    ABSENT = "ABSENT"


# Verdict flags (explainable reason tags for the human reviewer)
FLAG_NO_EVIDENCE = "no-evidence"
FLAG_ENVIRONMENT_MISMATCH = "environment-mismatch"
FLAG_CLUSTER_SUSPECT = "cluster-suspect"
FLAG_CLUSTER_PEER_PREFIX = "cluster-peer:"
FLAG_SHIELD_REJECTED = "shield-rejected"
FLAG_WALL_OBSTRUCTION = "wall-obstruction"
FLAG_INSUFFICIENT_OVERLAP = "insufficient-overlap"
FLAG_LIVENESS_UNCONFIRMED = "liveness-unconfirmed"
FLAG_NOT_ENROLLED = "not-enrolled"
FLAG_EVALUATION_FAULT = "evaluation-fault"
FLAG_HUMAN_OVERRIDE = "human-override"


@dataclass(frozen=True)
class SessionSettings:
    """
    Calibration for one session; immutable for the session's lifetime.

    similarity_threshold=None means the session carries no threshold of its own and
    discovery falls back to the caller-supplied threshold.
    """

    similarity_threshold: float | None = DEFAULT_SIMILARITY_THRESHOLD
    max_displacement_radius: float = DEFAULT_MAX_DISPLACEMENT_RADIUS
    physics_shield_enabled: bool = True

    def threshold_or(self, fallback: float | None) -> float:
        if self.similarity_threshold is not None:
            return self.similarity_threshold
        if fallback is not None:
            return fallback
        return DEFAULT_SIMILARITY_THRESHOLD

    def to_dict(self) -> dict[str, Any]:
        return {
            "similarity_threshold": self.similarity_threshold,
            "max_displacement_radius": self.max_displacement_radius,
            "physics_shield_enabled": self.physics_shield_enabled,
        }


@dataclass
class EvidenceRecord:
    """
    Evidence accumulated for one participant during a session.

    Histories are append-only; liveness_confirmed only moves false -> true.
    """

    participant_id: str
    fingerprint_history: list[dict[str, float]] = field(default_factory=list)
    motion_history: list[float] = field(default_factory=list)
    liveness_confirmed: bool = False
    roll_no: str | None = None

    @property
    def latest_fingerprint(self) -> dict[str, float] | None:
        if not self.fingerprint_history:
            return None
        return self.fingerprint_history[-1]

    def append(self, fingerprint: FingerprintVector, motion_sample: float | None) -> None:
        self.fingerprint_history.append(dict(fingerprint))
        if motion_sample is not None:
            self.motion_history.append(float(motion_sample))

    def confirm_liveness(self) -> None:
        self.liveness_confirmed = True

    def copy(self) -> EvidenceRecord:
        """Detached copy for finalization snapshots."""
        return EvidenceRecord(
            participant_id=self.participant_id,
            fingerprint_history=[dict(fp) for fp in self.fingerprint_history],
            motion_history=list(self.motion_history),
            liveness_confirmed=self.liveness_confirmed,
            roll_no=self.roll_no,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "participant_id": self.participant_id,
            "samples": len(self.fingerprint_history),
            "motion_samples": len(self.motion_history),
            "liveness_confirmed": self.liveness_confirmed,
            "roll_no": self.roll_no,
        }


@dataclass(frozen=True)
class ShieldResult:
    """Displacement shield outcome for one fingerprint pair."""

    valid: bool
    displacement: float
    obstructed: bool
    common_dimensions: int
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "displacement": self.displacement,
            "obstructed": self.obstructed,
            "common_dimensions": self.common_dimensions,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class VerdictRecord:
    """
    Final classification of one participant.

    Carries the raw score, displacement and every flag so a reviewer can audit
    the decision without the underlying evidence.
    """

    participant_id: str
    similarity_score: float
    displacement: float
    liveness_confirmed: bool
    flags: frozenset[str]
    status: VerdictStatus
    reason: str = ""
    roll_no: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "participant_id": self.participant_id,
            "roll_no": self.roll_no,
            "similarity_score": round(self.similarity_score, 2),
            "displacement": self.displacement,
            "liveness_confirmed": self.liveness_confirmed,
            "flags": sorted(self.flags),
            "status": self.status.value,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class Correction:
    """Human override requested by the anchor's operator."""

    participant_id: str
    new_status: VerdictStatus


@dataclass(frozen=True)
class CorrectionEntry:
    """Audit trail entry for an applied override."""

    participant_id: str
    old_status: VerdictStatus
    new_status: VerdictStatus

    def to_dict(self) -> dict[str, Any]:
        return {
            "participant_id": self.participant_id,
            "old_status": self.old_status.value,
            "new_status": self.new_status.value,
        }
