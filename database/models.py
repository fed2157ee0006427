"""
Row models for the scan and engagement core.

Users, volunteers, events and stalls are owned by the admin collaborator; the
core only reads them. Attendance sessions are owned by the gate.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Literal

ActorKind = Literal["user", "volunteer"]


class SessionStatus(str, Enum):
    CHECKED_IN = "checked-in"
    CHECKED_OUT = "checked-out"


class GateState(Enum):
    """Per (student, event) gate state; derived from the presence of a checked-in session."""

    NO_OPEN_SESSION = "no-open-session"
    CHECKED_IN = "checked-in"


@dataclass(frozen=True)
class Actor:
    """
    Normalized identity for anyone who scans or is scanned.

    Users and volunteers live in different tables; both resolve to this shape
    once, at the request boundary.
    """

    id: str
    kind: ActorKind
    role: str
    is_active: bool
    name: str | None = None
    department: str | None = None
    roll_number: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "role": self.role,
            "department": self.department,
            "roll_number": self.roll_number,
        }


@dataclass(frozen=True)
class Event:
    id: str
    name: str
    start_date: datetime | None
    end_date: datetime | None
    is_active: bool
    allow_feedback: bool
    allow_voting: bool
    max_votes_per_student: int
    manually_ended: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name}


@dataclass(frozen=True)
class Stall:
    id: str
    event_id: str
    name: str
    category: str | None
    department: str | None
    is_active: bool
    scan_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "department": self.department,
        }


@dataclass(frozen=True)
class AttendanceSession:
    id: int
    student_id: str
    event_id: str
    check_in_time: datetime
    check_out_time: datetime | None
    status: SessionStatus
    is_nullified: bool = False
    nullified_reason: str | None = None
    nullified_duration: int | None = None
    event_stop_time: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.status is SessionStatus.CHECKED_IN

    @property
    def duration_seconds(self) -> int | None:
        """Creditable seconds; None while open and for nullified sessions."""
        if self.is_nullified or self.check_out_time is None:
            return None
        return max(0, int((self.check_out_time - self.check_in_time).total_seconds()))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        for key in ("check_in_time", "check_out_time", "event_stop_time"):
            value = data[key]
            data[key] = value.isoformat() if value is not None else None
        data["duration_seconds"] = self.duration_seconds
        return data
