"""
Liveness coordinator: timed challenge windows and proof acceptance per session.

State per session is Idle -> ChallengeOpen -> Idle, cycling for the session's
lifetime. Expiry is an absolute monotonic deadline compared on every read; there is
no background timer, so a window that lapsed while nobody looked is still closed
the next time anyone asks.
"""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable

from backend_presence.core.exceptions import InputError, InvalidProof, StateError, WindowClosed
from backend_presence.presence_logging import get_logger

if TYPE_CHECKING:
    from backend_presence.consensus.registry import Session

logger = get_logger(__name__)

MAX_WINDOW_MS = 600_000


class LivenessState(str, Enum):
    IDLE = "idle"
    CHALLENGE_OPEN = "challenge_open"


@dataclass(frozen=True)
class LivenessChallenge:
    """Question shown to claimants while a window is open; the answer stays server-side."""

    question: str
    answer: str

    @classmethod
    def arithmetic(cls, rng: random.Random | None = None) -> LivenessChallenge:
        r = rng or random.SystemRandom()
        a = r.randint(1, 9)
        b = r.randint(1, 9)
        return cls(question=f"What is {a} + {b}?", answer=str(a + b))

    def accepts(self, answer: str | None) -> bool:
        return answer is not None and str(answer).strip() == self.answer


@dataclass(frozen=True)
class LivenessWindow:
    opened_at: float
    expires_at: float
    challenge: LivenessChallenge | None = None

    @property
    def question(self) -> str | None:
        return self.challenge.question if self.challenge else None


class LivenessCoordinator:
    """
    Opens challenge windows and accepts proofs while they are open.

    clock must be monotonic; tests inject a manual clock.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock

    def now(self) -> float:
        return self._clock()

    def trigger(
        self,
        session: Session,
        window_ms: int,
        challenge: LivenessChallenge | None = None,
    ) -> LivenessWindow:
        """Open (or re-open with a fresh deadline) the session's challenge window."""
        if not isinstance(window_ms, (int, float)) or not 0 < window_ms <= MAX_WINDOW_MS:
            raise InputError(f"window duration must be in (0, {MAX_WINDOW_MS}] ms")
        with session.lock:
            session.ensure_writable()
            now = self._clock()
            window = LivenessWindow(
                opened_at=now,
                expires_at=now + window_ms / 1000.0,
                challenge=challenge,
            )
            session.liveness_window = window
        logger.info(
            "liveness_triggered",
            anchor_id=session.anchor_id,
            window_ms=window_ms,
            challenge=challenge is not None,
        )
        return window

    def open_window(self, session: Session) -> LivenessWindow | None:
        """Return the window if it is open right now; None when idle or expired."""
        window = session.liveness_window
        if window is None or self._clock() >= window.expires_at:
            return None
        return window

    def is_open(self, session: Session) -> bool:
        return self.open_window(session) is not None

    def state(self, session: Session) -> LivenessState:
        return LivenessState.CHALLENGE_OPEN if self.is_open(session) else LivenessState.IDLE

    def submit_proof(
        self,
        session: Session,
        participant_id: str,
        answer: str | None = None,
    ) -> bool:
        """
        Mark the participant live. Returns True if newly confirmed, False if it
        already was (re-submission is a no-op success).

        Raises WindowClosed outside an open window, InvalidProof on a wrong answer,
        StateError when the participant has no evidence record.
        """
        with session.lock:
            session.ensure_writable()
            window = self.open_window(session)
            if window is None:
                raise WindowClosed(f"No open liveness window for anchor {session.anchor_id}")
            record = session.evidence.get(participant_id)
            if record is None:
                raise StateError(f"Participant {participant_id} has not submitted evidence")
            if record.liveness_confirmed:
                return False
            if window.challenge is not None and not window.challenge.accepts(answer):
                raise InvalidProof("Answer does not match the open challenge")
            record.confirm_liveness()
        logger.info(
            "liveness_proof_accepted",
            anchor_id=session.anchor_id,
            participant_id=participant_id,
        )
        return True
