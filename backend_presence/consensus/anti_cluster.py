"""
Anti-cluster auditor: find participants whose evidence is indistinguishable.

Heuristic rule (no ML): two devices reporting near-identical latest fingerprints
while both sit perfectly still are most likely one person carrying both. Each such
pair is flagged mutually. O(n^2) in participants, bounded by a room's population.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from itertools import combinations
from typing import Mapping

from backend_presence.consensus.models import EvidenceRecord
from backend_presence.consensus.similarity import similarity
from backend_presence.presence_logging import get_logger

logger = get_logger(__name__)

NEAR_IDENTICAL_SCORE = 98.0
STATIC_MOTION_THRESHOLD = 0.01


@dataclass(frozen=True)
class AuditConfig:
    """
    Thresholds for the cluster audit.

    missing_motion_is_static: treat a participant with no motion samples as a
    static device. Off by default: no samples means no motion evidence either way.
    """

    near_identical_score: float = NEAR_IDENTICAL_SCORE
    static_motion_threshold: float = STATIC_MOTION_THRESHOLD
    missing_motion_is_static: bool = False


def average_motion(samples: list[float]) -> float | None:
    """Mean absolute motion magnitude; None when there are no usable samples."""
    values = [abs(float(s)) for s in samples if math.isfinite(float(s))]
    if not values:
        return None
    return sum(values) / len(values)


def _is_static(record: EvidenceRecord, config: AuditConfig) -> bool:
    avg = average_motion(record.motion_history)
    if avg is None:
        return config.missing_motion_is_static
    return avg < config.static_motion_threshold


def audit(
    evidence: Mapping[str, EvidenceRecord],
    config: AuditConfig | None = None,
) -> dict[str, set[str]]:
    """
    Compare every unordered pair of participants; return participant -> implicated peers.

    Only participants in at least one flagged pair appear in the result.
    """
    cfg = config or AuditConfig()
    candidates = sorted(
        pid for pid, rec in evidence.items() if rec.latest_fingerprint
    )
    static = {pid: _is_static(evidence[pid], cfg) for pid in candidates}

    implicated: dict[str, set[str]] = {}
    for a, b in combinations(candidates, 2):
        if not (static[a] and static[b]):
            continue
        score = similarity(evidence[a].latest_fingerprint, evidence[b].latest_fingerprint)
        if score <= cfg.near_identical_score:
            continue
        implicated.setdefault(a, set()).add(b)
        implicated.setdefault(b, set()).add(a)
        logger.info(
            "cluster_flagged",
            participant_a=a,
            participant_b=b,
            similarity=round(score, 2),
        )
    return implicated
