"""Abstract collaborator interfaces; implement for the deployment's own systems."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Sequence

from backend_presence.consensus.models import CorrectionEntry, VerdictRecord


class SchedulingGate(ABC):
    """Answers whether an anchor may open a session right now."""

    @abstractmethod
    def check(self, anchor_id: str, now: datetime | None = None) -> None:
        """Return normally when allowed; raise ScheduleDenied otherwise."""
        ...


class EnrollmentProvider(ABC):
    """Lists the participants expected in an anchor's session."""

    @abstractmethod
    def participants_for(self, anchor_id: str) -> list[str] | None:
        """Return enrolled participant ids, or None when the anchor has no roster."""
        ...


class PersistenceSink(ABC):
    """Durable storage for finalized verdicts and human corrections."""

    @abstractmethod
    def save(
        self,
        anchor_id: str,
        verdicts: Sequence[VerdictRecord],
        corrections: Sequence[CorrectionEntry],
    ) -> int:
        """Persist one finalized session; return the stored record id."""
        ...
