"""
FastAPI server: transport for the presence-consensus engine.

Every route validates its payload with a pydantic model, delegates to the
PresenceService held on app.state, and lets engine errors surface through one
exception handler that maps the error taxonomy onto HTTP status codes.
Authentication is the caller's concern; anchor and participant ids arrive in the
path and body.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from backend_presence.api_server.schemas import (
    AdminSettingsRequest,
    AdminSettingsResponse,
    CommitRequest,
    CommitResponse,
    DiscoverRequest,
    DiscoverResponse,
    FinalizeRequest,
    FinalizeResponse,
    LivenessProofRequest,
    LivenessProofResponse,
    OpenSessionRequest,
    OpenSessionResponse,
    SubmitEvidenceRequest,
    SubmitEvidenceResponse,
    TriggerLivenessRequest,
    TriggerLivenessResponse,
)
from backend_presence.collaborators.schedule_gate import AllowAllGate, WeeklyScheduleGate
from backend_presence.config import get_settings
from backend_presence.consensus.models import Correction, SessionSettings
from backend_presence.consensus.service import PresenceService
from backend_presence.core.exceptions import (
    InputError,
    NotFoundError,
    PresenceError,
    ScheduleDenied,
    StateError,
)
from backend_presence.database import AttendanceStore
from backend_presence.presence_logging import get_logger

logger = get_logger(__name__)

_STATUS_BY_ERROR: list[tuple[type[PresenceError], int]] = [
    (InputError, 400),
    (ScheduleDenied, 403),
    (NotFoundError, 404),
    (StateError, 409),
]


def _status_for(exc: PresenceError) -> int:
    for cls, status in _STATUS_BY_ERROR:
        if isinstance(exc, cls):
            return status
    return 500


# -----------------------------------------------------------------------------
# Service construction and dependency
# -----------------------------------------------------------------------------


def build_default_service() -> PresenceService:
    """Service wired from environment settings with the SQLAlchemy attendance store."""
    settings = get_settings()
    gate = (
        WeeklyScheduleGate(
            grace_minutes=settings.schedule_grace_minutes,
            utc_offset_minutes=settings.schedule_utc_offset_minutes,
        )
        if settings.schedule_enforced
        else AllowAllGate()
    )
    return PresenceService(
        schedule_gate=gate,
        sink=AttendanceStore(settings.database_url),
        settings=settings,
    )


def get_service(request: Request) -> PresenceService:
    return request.app.state.service


def _merge_settings(service: PresenceService, body: OpenSessionRequest) -> SessionSettings:
    defaults = service.default_session_settings()
    if body.settings is None:
        return defaults
    s = body.settings
    return SessionSettings(
        similarity_threshold=(
            s.similarity_threshold
            if s.similarity_threshold is not None
            else defaults.similarity_threshold
        ),
        max_displacement_radius=(
            s.max_displacement_radius
            if s.max_displacement_radius is not None
            else defaults.max_displacement_radius
        ),
        physics_shield_enabled=(
            s.physics_shield_enabled
            if s.physics_shield_enabled is not None
            else defaults.physics_shield_enabled
        ),
    )


# -----------------------------------------------------------------------------
# App factory
# -----------------------------------------------------------------------------


def create_app(service: PresenceService | None = None) -> FastAPI:
    """Build the ASGI app; pass a service to inject collaborators (tests do)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sink = app.state.service.sink
        if isinstance(sink, AttendanceStore):
            try:
                sink.init_db()
            except Exception as e:
                logger.warning("attendance_store_init_skip", error=str(e))
        logger.info("presence_api_started", sessions=len(app.state.service.registry))
        yield
        logger.info("presence_api_stopped", open_sessions=len(app.state.service.registry))

    app = FastAPI(
        title="Backend Presence API",
        description="Co-location verification by environmental-signal consensus.",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.service = service or build_default_service()

    @app.exception_handler(PresenceError)
    def presence_error_handler(request: Request, exc: PresenceError) -> JSONResponse:
        status = _status_for(exc)
        logger.info("request_rejected", path=request.url.path, code=exc.code, status=status)
        return JSONResponse(status_code=status, content={"code": exc.code, "detail": exc.message})

    @app.exception_handler(HTTPException)
    def http_exception_handler(request: Any, exc: HTTPException) -> JSONResponse:
        """Consistent JSON error response for HTTPException."""
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.get("/health")
    def health() -> dict[str, str]:
        """Liveness probe: API is up."""
        return {"status": "ok"}

    # --- Anchor operations ---------------------------------------------------

    @app.post("/sessions", response_model=OpenSessionResponse, status_code=201)
    def open_session(
        body: OpenSessionRequest, svc: PresenceService = Depends(get_service)
    ) -> OpenSessionResponse:
        session = svc.open_session(body.anchor_id, body.fingerprint, _merge_settings(svc, body))
        return OpenSessionResponse(
            anchor_id=session.anchor_id,
            settings=session.settings.to_dict(),
            access_points=len(session.seed_fingerprint),
        )

    @app.post("/sessions/{anchor_id}/liveness", response_model=TriggerLivenessResponse)
    def trigger_liveness(
        anchor_id: str,
        body: TriggerLivenessRequest | None = None,
        svc: PresenceService = Depends(get_service),
    ) -> TriggerLivenessResponse:
        ack = svc.trigger_liveness(anchor_id, body.window_ms if body else None)
        return TriggerLivenessResponse(question=ack.question, expires_in_ms=ack.expires_in_ms)

    @app.post("/sessions/{anchor_id}/finalize", response_model=FinalizeResponse)
    def finalize_session(
        anchor_id: str,
        body: FinalizeRequest | None = None,
        svc: PresenceService = Depends(get_service),
    ) -> FinalizeResponse:
        result = svc.finalize_session(anchor_id, body.enrolled if body else None)
        return FinalizeResponse.model_validate(result.to_dict())

    @app.post("/sessions/{anchor_id}/commit", response_model=CommitResponse)
    def commit_session(
        anchor_id: str,
        body: CommitRequest,
        svc: PresenceService = Depends(get_service),
    ) -> CommitResponse:
        corrections = [Correction(c.participant_id, c.new_status) for c in body.corrections]
        return CommitResponse(record_id=svc.commit_session(anchor_id, corrections))

    @app.delete("/sessions/{anchor_id}")
    def close_session(anchor_id: str, svc: PresenceService = Depends(get_service)) -> dict[str, str]:
        svc.close_session(anchor_id)
        return {"status": "closed"}

    @app.get("/sessions")
    def live_sessions(svc: PresenceService = Depends(get_service)) -> list[dict[str, Any]]:
        """Live mesh overview: one row per active session."""
        return [s.to_dict() for s in svc.live_sessions()]

    # --- Claimant operations -------------------------------------------------

    @app.post("/discover", response_model=DiscoverResponse)
    def discover(body: DiscoverRequest, svc: PresenceService = Depends(get_service)) -> DiscoverResponse:
        return DiscoverResponse(anchor_id=svc.discover_session(body.fingerprint))

    @app.post("/sessions/{anchor_id}/evidence", response_model=SubmitEvidenceResponse)
    def submit_evidence(
        anchor_id: str,
        body: SubmitEvidenceRequest,
        svc: PresenceService = Depends(get_service),
    ) -> SubmitEvidenceResponse:
        ack = svc.submit_evidence(
            anchor_id,
            body.participant_id,
            body.fingerprint,
            body.motion_sample,
            body.roll_no,
        )
        return SubmitEvidenceResponse(
            liveness_window_open=ack.liveness_window_open,
            question=ack.question,
        )

    @app.post("/sessions/{anchor_id}/liveness/proof", response_model=LivenessProofResponse)
    def submit_liveness_proof(
        anchor_id: str,
        body: LivenessProofRequest,
        svc: PresenceService = Depends(get_service),
    ) -> LivenessProofResponse:
        newly = svc.submit_liveness_proof(anchor_id, body.participant_id, body.answer)
        return LivenessProofResponse(newly_confirmed=newly)

    # --- Admin ---------------------------------------------------------------

    @app.get("/admin/settings", response_model=AdminSettingsResponse)
    def get_admin_settings(svc: PresenceService = Depends(get_service)) -> AdminSettingsResponse:
        return AdminSettingsResponse(**svc.default_session_settings().to_dict())

    @app.put("/admin/settings", response_model=AdminSettingsResponse)
    def update_admin_settings(
        body: AdminSettingsRequest, svc: PresenceService = Depends(get_service)
    ) -> AdminSettingsResponse:
        updated = svc.update_default_threshold(body.similarity_threshold)
        return AdminSettingsResponse(**updated.to_dict())

    return app
