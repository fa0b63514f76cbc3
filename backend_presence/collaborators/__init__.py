"""
Collaborator interfaces and implementations consumed by the consensus service.

Scheduling gate (may this anchor open a session now?), enrollment provider (who is
expected in this session?) and persistence sink (store finalized verdicts). All are
injected into PresenceService; none are part of the core.
"""

from backend_presence.collaborators.base import (
    EnrollmentProvider,
    PersistenceSink,
    SchedulingGate,
)
from backend_presence.collaborators.enrollment import StaticEnrollmentProvider
from backend_presence.collaborators.schedule_gate import (
    AllowAllGate,
    ScheduleSlot,
    WeeklyScheduleGate,
)

__all__ = [
    "EnrollmentProvider",
    "PersistenceSink",
    "SchedulingGate",
    "StaticEnrollmentProvider",
    "AllowAllGate",
    "ScheduleSlot",
    "WeeklyScheduleGate",
]
