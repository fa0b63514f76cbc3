"""
Similarity engine: cosine similarity between two Wi-Fi fingerprints, 0–100.

Readings are shifted by SIGNAL_OFFSET so the weakest plausible reading maps to
zero weight; keys missing from one side count as zero. Total over all inputs:
empty, disjoint, or malformed vectors score exactly 0.
"""

from __future__ import annotations

import math

from backend_presence.consensus.models import FingerprintVector
from backend_presence.core.exceptions import ComputationFault
from backend_presence.presence_logging import get_logger

logger = get_logger(__name__)

# -110 dBm (below the noise floor of consumer radios) maps to weight 0
SIGNAL_OFFSET = 110.0
MAX_SCORE = 100.0


def _weight(reading: float) -> float:
    value = float(reading)
    if not math.isfinite(value):
        raise ComputationFault(f"non-finite reading {reading!r}")
    return max(0.0, value + SIGNAL_OFFSET)


def _cosine(a: FingerprintVector, b: FingerprintVector) -> float:
    if not (a.keys() & b.keys()):
        return 0.0
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for key in sorted(a.keys() | b.keys()):
        wa = _weight(a[key]) if key in a else 0.0
        wb = _weight(b[key]) if key in b else 0.0
        dot += wa * wb
        norm_a += wa * wa
        norm_b += wb * wb
    if norm_a <= 0.0 or norm_b <= 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def similarity(a: FingerprintVector | None, b: FingerprintVector | None) -> float:
    """
    Return the similarity of two fingerprints in [0, 100].

    Symmetric; 100 for identical non-empty vectors; 0 when either vector is empty,
    the vectors share no keys, or any reading is malformed.
    """
    if not a or not b:
        return 0.0
    try:
        score = _cosine(a, b) * MAX_SCORE
    except (ComputationFault, TypeError, ValueError, ArithmeticError, AttributeError) as e:
        logger.warning("similarity_computation_fault", error=str(e))
        return 0.0
    return round(min(MAX_SCORE, max(0.0, score)), 6)
