"""
Event-end sweep.

Sessions still open when an event stops are force-closed and flagged as
nullified. Their time inside is kept as ``nullified_duration`` for reporting
but never counts as attended time.
"""

import logging
import sqlite3
from datetime import datetime
from typing import Any, TypedDict

from backend.config import NULLIFIED_REASON_EVENT_ENDED
from backend.errors import EventNotFound
from database.db import get_event, get_event_ids_with_open_sessions, mark_event_ended, read_only, transaction
from database.models import SessionStatus
from database.sessions import list_open_sessions, list_sessions, nullify_session

logger = logging.getLogger(__name__)


class AttendanceSummary(TypedDict):
    student_id: str
    event_id: str
    current_status: str
    total_sessions: int
    nullified_sessions: int
    total_valid_duration: int
    total_nullified_duration: int
    sessions: list[dict[str, Any]]


def nullify_open_sessions(conn: sqlite3.Connection, event_id: str, now: datetime) -> int:
    """Nullify every checked-in session of the event. Safe to call repeatedly."""
    count = 0
    for session in list_open_sessions(conn, event_id=event_id):
        duration = max(0, int((now - session.check_in_time).total_seconds()))
        if nullify_session(
            conn,
            session.id,
            check_out_time=max(now, session.check_in_time),
            event_stop_time=now,
            nullified_duration=duration,
            reason=NULLIFIED_REASON_EVENT_ENDED,
        ):
            count += 1
    return count


def end_event(event_id: str, *, now: datetime | None = None) -> dict[str, Any]:
    marker = now or datetime.now()
    with transaction() as conn:
        event = get_event(conn, event_id)
        if event is None:
            raise EventNotFound(event_id)
        mark_event_ended(conn, event.id, marker)
        nullified = nullify_open_sessions(conn, event.id, marker)

    logger.info("Event %s ended; nullified %s open session(s)", event_id, nullified)
    return {"event_id": event_id, "ended_at": marker.isoformat(), "nullified_sessions": nullified}


def sweep_ended_events(*, now: datetime | None = None) -> dict[str, Any]:
    """Nullify open sessions of every event whose end date has passed."""
    marker = now or datetime.now()
    swept: dict[str, int] = {}
    with transaction() as conn:
        for event_id in get_event_ids_with_open_sessions(conn):
            event = get_event(conn, event_id)
            if event is None or event.end_date is None or event.end_date > marker:
                continue
            count = nullify_open_sessions(conn, event.id, marker)
            if count:
                swept[event.id] = count

    total = sum(swept.values())
    logger.info("Attendance maintenance swept %s event(s), nullified %s session(s)", len(swept), total)
    return {"events": swept, "nullified_sessions": total, "ran_at": marker.isoformat()}


def get_attendance_summary(student_id: str, event_id: str) -> AttendanceSummary:
    with read_only() as conn:
        if get_event(conn, event_id) is None:
            raise EventNotFound(event_id)
        sessions = list_sessions(conn, student_id=student_id, event_id=event_id)

    valid = sum(s.duration_seconds or 0 for s in sessions)
    nullified = [s for s in sessions if s.is_nullified]
    current = SessionStatus.CHECKED_OUT
    if any(s.is_open for s in sessions):
        current = SessionStatus.CHECKED_IN
    return {
        "student_id": student_id,
        "event_id": event_id,
        "current_status": current.value,
        "total_sessions": len(sessions),
        "nullified_sessions": len(nullified),
        "total_valid_duration": valid,
        "total_nullified_duration": sum(s.nullified_duration or 0 for s in nullified),
        "sessions": [s.to_dict() for s in sessions],
    }
