"""
Decision engine: fuse similarity, displacement, liveness and cluster evidence
into one verdict per participant.

Classification precedence (first match wins):
1. score >= threshold, live, shield passed or disabled, no cluster flag -> PRESENT
2. score >= threshold, live, shield enabled and failed                 -> ABSENT
3. score >= threshold, live, cluster flag                              -> PARTIAL
4. score > threshold / 2                                               -> PARTIAL
5. otherwise                                                           -> ABSENT

Runs over a detached snapshot; a fault evaluating one participant yields an
ABSENT verdict flagged evaluation-fault and never aborts the others.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Iterable, Sequence

from backend_presence.consensus import displacement
from backend_presence.consensus.anti_cluster import AuditConfig, audit
from backend_presence.consensus.models import (
    FLAG_CLUSTER_PEER_PREFIX,
    FLAG_CLUSTER_SUSPECT,
    FLAG_ENVIRONMENT_MISMATCH,
    FLAG_EVALUATION_FAULT,
    FLAG_HUMAN_OVERRIDE,
    FLAG_INSUFFICIENT_OVERLAP,
    FLAG_LIVENESS_UNCONFIRMED,
    FLAG_NO_EVIDENCE,
    FLAG_NOT_ENROLLED,
    FLAG_SHIELD_REJECTED,
    FLAG_WALL_OBSTRUCTION,
    Correction,
    CorrectionEntry,
    EvidenceRecord,
    FingerprintVector,
    VerdictRecord,
    VerdictStatus,
)
from backend_presence.consensus.registry import SessionSnapshot
from backend_presence.consensus.similarity import similarity
from backend_presence.core.exceptions import InputError
from backend_presence.presence_logging import get_logger

logger = get_logger(__name__)

# Share of the anchor's access points a participant must also see
ENVIRONMENT_OVERLAP_MIN = 0.3

REASON_CONSENSUS = "consensus reached"
REASON_CLUSTER_REVIEW = "cluster suspect, human review required"
REASON_WEAK_MATCH = "weak signal match"
REASON_NO_LIVENESS = "liveness not confirmed"
REASON_SIGNAL_MISMATCH = "signal mismatch"
REASON_NO_EVIDENCE = "no evidence submitted"
REASON_EVALUATION_FAULT = "evaluation fault"


def overlap_ratio(participant: FingerprintVector | None, seed: FingerprintVector | None) -> float:
    """|participant keys & seed keys| / |seed keys|; 0 for an empty seed."""
    if not seed:
        return 0.0
    if not participant:
        return 0.0
    return len(participant.keys() & seed.keys()) / len(seed)


def classify(
    score: float,
    threshold: float,
    liveness_confirmed: bool,
    shield_enabled: bool,
    shield_valid: bool,
    cluster_flagged: bool,
    shield_reason: str = "",
) -> tuple[VerdictStatus, str]:
    """Apply the fixed classification precedence; returns (status, reason)."""
    qualified = score >= threshold and liveness_confirmed
    shield_ok = not shield_enabled or shield_valid
    if qualified and shield_ok and not cluster_flagged:
        return VerdictStatus.PRESENT, REASON_CONSENSUS
    if qualified and shield_enabled and not shield_valid:
        return VerdictStatus.ABSENT, f"displacement shield: {shield_reason or 'rejected'}"
    if qualified and cluster_flagged:
        return VerdictStatus.PARTIAL, REASON_CLUSTER_REVIEW
    if score > threshold / 2:
        if score >= threshold and not liveness_confirmed:
            return VerdictStatus.PARTIAL, REASON_NO_LIVENESS
        return VerdictStatus.PARTIAL, REASON_WEAK_MATCH
    return VerdictStatus.ABSENT, REASON_SIGNAL_MISMATCH


class DecisionEngine:
    """Produces verdicts for every participant of a finalized session snapshot."""

    def __init__(
        self,
        audit_config: AuditConfig | None = None,
        fallback_threshold: float | None = None,
    ) -> None:
        self.audit_config = audit_config or AuditConfig()
        self.fallback_threshold = fallback_threshold

    def finalize(
        self,
        snapshot: SessionSnapshot,
        enrolled: Sequence[str] | None = None,
    ) -> list[VerdictRecord]:
        """
        Return one verdict per enrolled participant, in enrollment order.

        With no enrollment list, every participant with evidence is evaluated.
        Evidence holders missing from a supplied list are appended, flagged not-enrolled.
        """
        if enrolled is None:
            roster = sorted(snapshot.evidence)
            extras: list[str] = []
        else:
            roster = list(dict.fromkeys(p.strip() for p in enrolled if p and p.strip()))
            listed = set(roster)
            extras = sorted(pid for pid in snapshot.evidence if pid not in listed)

        try:
            clusters = audit(snapshot.evidence, self.audit_config)
        except Exception as e:
            logger.exception("cluster_audit_failed", anchor_id=snapshot.anchor_id, error=str(e))
            clusters = {}

        verdicts: list[VerdictRecord] = []
        for pid in roster + extras:
            verdict = self._evaluate_guarded(pid, snapshot, clusters)
            if pid in extras:
                verdict = replace(verdict, flags=verdict.flags | {FLAG_NOT_ENROLLED})
            verdicts.append(verdict)

        counts: dict[str, int] = {}
        for v in verdicts:
            counts[v.status.value] = counts.get(v.status.value, 0) + 1
        logger.info(
            "session_finalized",
            anchor_id=snapshot.anchor_id,
            participants=len(verdicts),
            clusters=len(clusters),
            **{k.lower(): n for k, n in counts.items()},
        )
        return verdicts

    def _evaluate_guarded(
        self,
        participant_id: str,
        snapshot: SessionSnapshot,
        clusters: dict[str, set[str]],
    ) -> VerdictRecord:
        record = snapshot.evidence.get(participant_id)
        try:
            return self.evaluate_participant(participant_id, record, snapshot, clusters)
        except Exception as e:
            logger.exception(
                "participant_evaluation_failed",
                anchor_id=snapshot.anchor_id,
                participant_id=participant_id,
                error=str(e),
            )
            return VerdictRecord(
                participant_id=participant_id,
                similarity_score=0.0,
                displacement=displacement.SENTINEL_DISPLACEMENT,
                liveness_confirmed=bool(record and record.liveness_confirmed),
                flags=frozenset({FLAG_EVALUATION_FAULT}),
                status=VerdictStatus.ABSENT,
                reason=REASON_EVALUATION_FAULT,
                roll_no=record.roll_no if record else None,
            )

    def evaluate_participant(
        self,
        participant_id: str,
        record: EvidenceRecord | None,
        snapshot: SessionSnapshot,
        clusters: dict[str, set[str]],
    ) -> VerdictRecord:
        if record is None or not record.fingerprint_history:
            return VerdictRecord(
                participant_id=participant_id,
                similarity_score=0.0,
                displacement=0.0,
                liveness_confirmed=bool(record and record.liveness_confirmed),
                flags=frozenset({FLAG_NO_EVIDENCE}),
                status=VerdictStatus.ABSENT,
                reason=REASON_NO_EVIDENCE,
                roll_no=record.roll_no if record else None,
            )

        settings = snapshot.settings
        seed = snapshot.seed_fingerprint
        latest = record.latest_fingerprint
        threshold = settings.threshold_or(self.fallback_threshold)
        score = similarity(latest, seed)
        shield = displacement.evaluate(latest, seed, settings)

        flags: set[str] = set()
        if overlap_ratio(latest, seed) < ENVIRONMENT_OVERLAP_MIN:
            flags.add(FLAG_ENVIRONMENT_MISMATCH)
        if not record.liveness_confirmed:
            flags.add(FLAG_LIVENESS_UNCONFIRMED)
        if settings.physics_shield_enabled and not shield.valid:
            flags.add(FLAG_SHIELD_REJECTED)
            if shield.obstructed:
                flags.add(FLAG_WALL_OBSTRUCTION)
            if shield.reason == displacement.REASON_INSUFFICIENT_OVERLAP:
                flags.add(FLAG_INSUFFICIENT_OVERLAP)
        peers = clusters.get(participant_id, set())
        if peers:
            flags.add(FLAG_CLUSTER_SUSPECT)
            flags.update(f"{FLAG_CLUSTER_PEER_PREFIX}{p}" for p in sorted(peers))

        status, reason = classify(
            score=score,
            threshold=threshold,
            liveness_confirmed=record.liveness_confirmed,
            shield_enabled=settings.physics_shield_enabled,
            shield_valid=shield.valid,
            cluster_flagged=bool(peers),
            shield_reason=shield.reason,
        )
        verdict = VerdictRecord(
            participant_id=participant_id,
            similarity_score=score,
            displacement=shield.displacement,
            liveness_confirmed=record.liveness_confirmed,
            flags=frozenset(flags),
            status=status,
            reason=reason,
            roll_no=record.roll_no,
        )
        logger.debug(
            "verdict_computed",
            anchor_id=snapshot.anchor_id,
            participant_id=participant_id,
            status=status.value,
            score=round(score, 2),
            displacement=shield.displacement,
            flags=verdict.flags,
        )
        return verdict


def review_list(verdicts: Iterable[VerdictRecord]) -> list[VerdictRecord]:
    """Verdicts a human should look at: everything that is not PRESENT."""
    return [v for v in verdicts if v.status is not VerdictStatus.PRESENT]


def apply_corrections(
    verdicts: Sequence[VerdictRecord],
    corrections: Iterable[Correction],
) -> tuple[list[VerdictRecord], list[CorrectionEntry]]:
    """
    Apply human overrides. Returns (final verdicts, audit entries).

    Overrides that keep the same status are ignored; unknown participants raise InputError.
    """
    by_id = {v.participant_id: v for v in verdicts}
    entries: list[CorrectionEntry] = []
    for c in corrections:
        current = by_id.get(c.participant_id)
        if current is None:
            raise InputError(f"No verdict for participant {c.participant_id}")
        if current.status is c.new_status:
            continue
        entries.append(
            CorrectionEntry(
                participant_id=c.participant_id,
                old_status=current.status,
                new_status=c.new_status,
            )
        )
        by_id[c.participant_id] = replace(
            current,
            status=c.new_status,
            flags=current.flags | {FLAG_HUMAN_OVERRIDE},
        )
    return [by_id[v.participant_id] for v in verdicts], entries
