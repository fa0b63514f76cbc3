"""
Consensus engine package: presence verification from environmental signals.

Compares claimant fingerprints against an anchor's seed fingerprint, estimates
signal-space displacement, runs timed liveness windows, audits peers for
colluding devices, and fuses everything into per-participant verdicts.
"""

from backend_presence.consensus.models import (
    Correction,
    CorrectionEntry,
    EvidenceRecord,
    FingerprintVector,
    SessionSettings,
    ShieldResult,
    VerdictRecord,
    VerdictStatus,
)
from backend_presence.consensus.similarity import similarity
from backend_presence.consensus.displacement import evaluate as evaluate_displacement
from backend_presence.consensus.liveness import (
    LivenessChallenge,
    LivenessCoordinator,
    LivenessState,
    LivenessWindow,
)
from backend_presence.consensus.anti_cluster import AuditConfig, audit, average_motion
from backend_presence.consensus.registry import (
    Session,
    SessionRegistry,
    SessionSnapshot,
    SessionSummary,
)
from backend_presence.consensus.decision import (
    DecisionEngine,
    apply_corrections,
    classify,
    overlap_ratio,
    review_list,
)

__all__ = [
    "Correction",
    "CorrectionEntry",
    "EvidenceRecord",
    "FingerprintVector",
    "SessionSettings",
    "ShieldResult",
    "VerdictRecord",
    "VerdictStatus",
    "similarity",
    "evaluate_displacement",
    "LivenessChallenge",
    "LivenessCoordinator",
    "LivenessState",
    "LivenessWindow",
    "AuditConfig",
    "audit",
    "average_motion",
    "Session",
    "SessionRegistry",
    "SessionSnapshot",
    "SessionSummary",
    "DecisionEngine",
    "apply_corrections",
    "classify",
    "overlap_ratio",
    "review_list",
]
