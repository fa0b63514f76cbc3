"""
Request/response models, one pair per operation.

Fingerprints are validated here (non-empty keys, finite readings within the
radio's range) so the math layer only ever sees well-formed vectors.
"""

from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, Field, field_validator

from backend_presence.consensus.models import VerdictStatus

MIN_READING = -150.0
MAX_READING = 0.0
MAX_ACCESS_POINTS = 256


def _validate_fingerprint(value: dict[str, float], *, allow_empty: bool) -> dict[str, float]:
    if not value and not allow_empty:
        raise ValueError("fingerprint must not be empty")
    if len(value) > MAX_ACCESS_POINTS:
        raise ValueError(f"fingerprint has more than {MAX_ACCESS_POINTS} access points")
    cleaned: dict[str, float] = {}
    for key, reading in value.items():
        key = key.strip()
        if not key:
            raise ValueError("access point identifiers must be non-empty")
        if key in cleaned:
            raise ValueError(f"duplicate access point {key!r} after trimming whitespace")
        if not math.isfinite(reading) or not MIN_READING <= reading <= MAX_READING:
            raise ValueError(f"reading for {key!r} must be within {MIN_READING}..{MAX_READING}")
        cleaned[key] = reading
    return cleaned


class SettingsModel(BaseModel):
    """Per-session calibration; omitted fields use the process-wide defaults."""

    similarity_threshold: float | None = Field(None, ge=0, le=100)
    max_displacement_radius: float | None = Field(None, gt=0, le=200)
    physics_shield_enabled: bool | None = None


class OpenSessionRequest(BaseModel):
    anchor_id: str = Field(..., min_length=1, max_length=128)
    fingerprint: dict[str, float] = Field(..., description="Access point -> RSSI (dBm)")
    settings: SettingsModel | None = None

    @field_validator("fingerprint")
    @classmethod
    def _fingerprint(cls, v: dict[str, float]) -> dict[str, float]:
        return _validate_fingerprint(v, allow_empty=False)


class OpenSessionResponse(BaseModel):
    anchor_id: str
    settings: dict[str, Any]
    access_points: int


class TriggerLivenessRequest(BaseModel):
    window_ms: int | None = Field(None, ge=1, le=600_000)


class TriggerLivenessResponse(BaseModel):
    status: str = "triggered"
    question: str | None = None
    expires_in_ms: int


class SubmitEvidenceRequest(BaseModel):
    participant_id: str = Field(..., min_length=1, max_length=128)
    fingerprint: dict[str, float] = Field(default_factory=dict)
    motion_sample: float | None = Field(None, ge=0)
    roll_no: str | None = Field(None, max_length=64)

    @field_validator("fingerprint")
    @classmethod
    def _fingerprint(cls, v: dict[str, float]) -> dict[str, float]:
        return _validate_fingerprint(v, allow_empty=True)

    @field_validator("motion_sample")
    @classmethod
    def _motion(cls, v: float | None) -> float | None:
        if v is not None and not math.isfinite(v):
            raise ValueError("motion sample must be finite")
        return v


class SubmitEvidenceResponse(BaseModel):
    status: str = "ok"
    liveness_window_open: bool
    question: str | None = None


class LivenessProofRequest(BaseModel):
    participant_id: str = Field(..., min_length=1, max_length=128)
    answer: str | None = Field(None, max_length=32)


class LivenessProofResponse(BaseModel):
    status: str = "verified"
    newly_confirmed: bool


class DiscoverRequest(BaseModel):
    fingerprint: dict[str, float]

    @field_validator("fingerprint")
    @classmethod
    def _fingerprint(cls, v: dict[str, float]) -> dict[str, float]:
        return _validate_fingerprint(v, allow_empty=False)


class DiscoverResponse(BaseModel):
    status: str = "found"
    anchor_id: str


class FinalizeRequest(BaseModel):
    enrolled: list[str] | None = None


class VerdictModel(BaseModel):
    participant_id: str
    roll_no: str | None = None
    similarity_score: float
    displacement: float
    liveness_confirmed: bool
    flags: list[str]
    status: VerdictStatus
    reason: str = ""


class FinalizeResponse(BaseModel):
    status: str = "success"
    anchor_id: str
    verdicts: list[VerdictModel]
    review_list: list[VerdictModel]


class CorrectionModel(BaseModel):
    participant_id: str = Field(..., min_length=1, max_length=128)
    new_status: VerdictStatus


class CommitRequest(BaseModel):
    corrections: list[CorrectionModel] = Field(default_factory=list)


class CommitResponse(BaseModel):
    status: str = "success"
    record_id: int | None = None


class AdminSettingsRequest(BaseModel):
    similarity_threshold: float = Field(..., ge=0, le=100)


class AdminSettingsResponse(BaseModel):
    similarity_threshold: float | None
    max_displacement_radius: float
    physics_shield_enabled: bool
