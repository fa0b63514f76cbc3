"""
Application-level exceptions.

Every error carries a short machine code so the API layer can translate it into
a consistent JSON body and HTTP status. Math-layer failures (InputError,
ComputationFault) are absorbed inside the pure functions and surface as sentinel
results; session-state failures propagate to the caller.
"""

from __future__ import annotations


class PresenceError(Exception):
    """Base class for all engine errors."""

    code = "presence_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


class InputError(PresenceError):
    """Malformed or empty fingerprint, settings, or request payload."""

    code = "invalid_input"


class ComputationFault(PresenceError):
    """Unexpected arithmetic failure inside similarity/displacement math."""

    code = "computation_fault"


class NotFoundError(PresenceError):
    """Operation targets something that does not exist."""

    code = "not_found"


class NoActiveSession(NotFoundError):
    """No live session for the anchor, or the handle refers to a torn-down session."""

    code = "no_active_session"

    def __init__(self, anchor_id: str, message: str = "") -> None:
        super().__init__(message or f"No active session for anchor {anchor_id}")
        self.anchor_id = anchor_id


class StateError(PresenceError):
    """Operation is not allowed in the session's current state."""

    code = "invalid_state"


class WindowClosed(StateError):
    """Liveness proof submitted while no challenge window is open."""

    code = "window_closed"


class InvalidProof(StateError):
    """Liveness proof does not answer the open challenge."""

    code = "invalid_proof"


class SessionFinalizing(StateError):
    """Session has begun finalization and accepts no further writes."""

    code = "session_finalizing"


class ScheduleDenied(PresenceError):
    """Session-open request rejected by the scheduling gate."""

    code = "schedule_denied"
