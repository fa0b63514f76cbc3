"""
In-memory enrollment provider: anchor id -> roster of participant ids.
"""

from __future__ import annotations

import threading
from typing import Iterable, Mapping

from backend_presence.collaborators.base import EnrollmentProvider


class StaticEnrollmentProvider(EnrollmentProvider):
    def __init__(self, rosters: Mapping[str, Iterable[str]] | None = None) -> None:
        self._lock = threading.Lock()
        self._rosters: dict[str, list[str]] = {}
        for anchor_id, participants in (rosters or {}).items():
            self.set_roster(anchor_id, participants)

    def set_roster(self, anchor_id: str, participants: Iterable[str]) -> None:
        cleaned = list(dict.fromkeys(p.strip() for p in participants if p and p.strip()))
        with self._lock:
            self._rosters[anchor_id.strip().lower()] = cleaned

    def participants_for(self, anchor_id: str) -> list[str] | None:
        with self._lock:
            roster = self._rosters.get(anchor_id.strip().lower())
        return list(roster) if roster is not None else None
