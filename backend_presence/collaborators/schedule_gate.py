"""
Scheduling gate: anchors may open sessions only inside their timetable slots.

Each anchor has weekly slots (weekday + HH:MM start/end in campus local time).
An open is allowed from GRACE minutes before a slot starts until GRACE minutes
after it ends. Local time is UTC shifted by a fixed offset. Privileged anchors
(administrators) bypass the timetable.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable

from backend_presence.collaborators.base import SchedulingGate
from backend_presence.core.exceptions import InputError, ScheduleDenied
from backend_presence.presence_logging import get_logger

logger = get_logger(__name__)

WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


def _parse_hhmm(value: str) -> int:
    """'09:30' -> 570 minutes after midnight."""
    try:
        hours, minutes = (int(part) for part in value.strip().split(":"))
    except (AttributeError, ValueError):
        raise InputError(f"time must be HH:MM, got {value!r}") from None
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise InputError(f"time out of range: {value!r}")
    return hours * 60 + minutes


@dataclass(frozen=True)
class ScheduleSlot:
    day: str
    start: str
    end: str

    def __post_init__(self) -> None:
        if self.day.strip().capitalize() not in WEEKDAYS:
            raise InputError(f"unknown weekday {self.day!r}")
        if _parse_hhmm(self.end) < _parse_hhmm(self.start):
            raise InputError(f"slot ends before it starts: {self.start}-{self.end}")

    @property
    def weekday(self) -> str:
        return self.day.strip().capitalize()

    def covers(self, minute_of_day: int, grace_minutes: int) -> bool:
        start = _parse_hhmm(self.start) - grace_minutes
        end = _parse_hhmm(self.end) + grace_minutes
        return start <= minute_of_day <= end


class AllowAllGate(SchedulingGate):
    """Gate used when timetable enforcement is off."""

    def check(self, anchor_id: str, now: datetime | None = None) -> None:
        return None


class WeeklyScheduleGate(SchedulingGate):
    def __init__(
        self,
        grace_minutes: int = 10,
        utc_offset_minutes: int = 330,
        bypass_anchor_ids: Iterable[str] = (),
    ) -> None:
        self.grace_minutes = grace_minutes
        self.utc_offset = timedelta(minutes=utc_offset_minutes)
        self._bypass = {a.strip().lower() for a in bypass_anchor_ids}
        self._slots: dict[str, list[ScheduleSlot]] = {}
        self._lock = threading.Lock()

    def add_slot(self, anchor_id: str, slot: ScheduleSlot) -> None:
        with self._lock:
            self._slots.setdefault(anchor_id.strip().lower(), []).append(slot)

    def clear(self, anchor_id: str) -> int:
        """Remove every slot for the anchor; returns how many were removed."""
        with self._lock:
            return len(self._slots.pop(anchor_id.strip().lower(), []))

    def slots_for(self, anchor_id: str) -> list[ScheduleSlot]:
        with self._lock:
            return list(self._slots.get(anchor_id.strip().lower(), []))

    def _local_now(self, now: datetime | None) -> datetime:
        utc = now or datetime.now(timezone.utc)
        if utc.tzinfo is None:
            utc = utc.replace(tzinfo=timezone.utc)
        return utc.astimezone(timezone.utc) + self.utc_offset

    def check(self, anchor_id: str, now: datetime | None = None) -> None:
        key = anchor_id.strip().lower()
        if key in self._bypass:
            return
        local = self._local_now(now)
        today = WEEKDAYS[local.weekday()]
        minute = local.hour * 60 + local.minute
        todays = [s for s in self.slots_for(key) if s.weekday == today]
        if any(s.covers(minute, self.grace_minutes) for s in todays):
            return
        logger.info(
            "schedule_denied",
            anchor_id=key,
            day=today,
            slots=len(todays),
            local_time=f"{local.hour:02d}:{local.minute:02d}",
        )
        raise ScheduleDenied(
            f"OUT OF SCHEDULE: found {len(todays)} slots for {today}. "
            f"Local time: {local.hour:02d}:{local.minute:02d}"
        )
