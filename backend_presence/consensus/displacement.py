"""
Displacement shield: signal-space separation and wall detection for two fingerprints.

For every access point both devices see, the signed gap between readings feeds a
root-mean-square displacement. Gaps larger than ATTENUATION_THRESHOLD (about the loss
through a 4-inch concrete wall) count as obstruction hits; two or more hits mean a
physical barrier between the devices.

Never raises: malformed input degrades to a deny result with SENTINEL_DISPLACEMENT.
"""

from __future__ import annotations

import math

from backend_presence.consensus.models import FingerprintVector, SessionSettings, ShieldResult
from backend_presence.core.exceptions import ComputationFault
from backend_presence.presence_logging import get_logger

logger = get_logger(__name__)

ATTENUATION_THRESHOLD = 22.0
MIN_COMMON_DIMENSIONS = 2
MIN_OBSTRUCTION_HITS = 2
SENTINEL_DISPLACEMENT = 99.9

REASON_BYPASSED = "bypassed"
REASON_INSUFFICIENT_OVERLAP = "insufficient overlap"
REASON_COMPUTATION_FAULT = "computation fault"
REASON_OBSTRUCTED = "obstructed"
REASON_OUTSIDE_RADIUS = "outside radius"
REASON_INSIDE_RADIUS = "inside radius"


def _deny(reason: str, common_dimensions: int = 0) -> ShieldResult:
    return ShieldResult(
        valid=False,
        displacement=SENTINEL_DISPLACEMENT,
        obstructed=False,
        common_dimensions=common_dimensions,
        reason=reason,
    )


def _gap(a: FingerprintVector, b: FingerprintVector, key: str) -> float:
    gap = float(a[key]) - float(b[key])
    if not math.isfinite(gap):
        raise ComputationFault(f"non-finite gap for {key!r}")
    return gap


def evaluate(
    a: FingerprintVector | None,
    b: FingerprintVector | None,
    settings: SessionSettings,
) -> ShieldResult:
    """
    Estimate displacement between two fingerprints and decide if they share a room.

    valid = displacement <= settings.max_displacement_radius and not obstructed.
    """
    if not settings.physics_shield_enabled:
        return ShieldResult(
            valid=True,
            displacement=0.0,
            obstructed=False,
            common_dimensions=0,
            reason=REASON_BYPASSED,
        )
    try:
        if not a or not b:
            return _deny(REASON_INSUFFICIENT_OVERLAP)
        sum_squares = 0.0
        common = 0
        hits = 0
        for key in a.keys() & b.keys():
            gap = _gap(a, b, key)
            if abs(gap) > ATTENUATION_THRESHOLD:
                hits += 1
            sum_squares += gap * gap
            common += 1
        if common < MIN_COMMON_DIMENSIONS:
            return _deny(REASON_INSUFFICIENT_OVERLAP, common)

        displacement = math.sqrt(sum_squares / common)
        obstructed = hits >= MIN_OBSTRUCTION_HITS
        inside = displacement <= settings.max_displacement_radius
        if obstructed:
            reason = REASON_OBSTRUCTED
        elif inside:
            reason = REASON_INSIDE_RADIUS
        else:
            reason = REASON_OUTSIDE_RADIUS
        return ShieldResult(
            valid=inside and not obstructed,
            displacement=round(displacement, 2),
            obstructed=obstructed,
            common_dimensions=common,
            reason=reason,
        )
    except Exception as e:
        logger.warning("displacement_computation_fault", error=str(e))
        return _deny(REASON_COMPUTATION_FAULT)
