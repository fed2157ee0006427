"""
Gate scan engine: volunteer scans a student's QR and the student's attendance
for the encoded event toggles between checked-in and checked-out.

One scan is one scoped transaction. Validation is fail-fast and every
rejection rolls back before any row is written.
"""

import logging
import math
from datetime import datetime
from typing import Any, Literal, TypedDict

from backend.config import CHECKIN_COOLDOWN_SECONDS, CHECKOUT_MIN_SECONDS
from backend.errors import ActorNotAllowed, EngagementError, TooSoonToCheckIn, TooSoonToCheckOut
from backend.services.lookups import ensure_event_running, load_active_event, load_student
from backend.tokens import verify_token
from database.db import insert_scan_log, transaction
from database.models import Actor, AttendanceSession, GateState
from database.sessions import close_session, create_session, find_last_checkout, find_open_session

logger = logging.getLogger(__name__)

GATE_ROLES: set[str] = {"volunteer", "admin"}

GateAction = Literal["in", "out"]


class GateScanResult(TypedDict):
    action: GateAction
    student: dict[str, Any]
    event: dict[str, Any]
    attendance: dict[str, Any]
    timestamp: str


def gate_state(open_session: AttendanceSession | None) -> GateState:
    if open_session is not None and open_session.is_open:
        return GateState.CHECKED_IN
    return GateState.NO_OPEN_SESSION


def _check_in(conn, *, student_id: str, event_id: str, now: datetime) -> AttendanceSession:
    last = find_last_checkout(conn, student_id=student_id, event_id=event_id)
    if last is not None and last.check_out_time is not None:
        since_checkout = (now - last.check_out_time).total_seconds()
        if since_checkout < CHECKIN_COOLDOWN_SECONDS:
            raise TooSoonToCheckIn(math.ceil(CHECKIN_COOLDOWN_SECONDS - since_checkout))
    return create_session(conn, student_id=student_id, event_id=event_id, check_in_time=now)


def _check_out(conn, *, open_session: AttendanceSession, now: datetime) -> AttendanceSession:
    since_checkin = (now - open_session.check_in_time).total_seconds()
    if since_checkin < CHECKOUT_MIN_SECONDS:
        raise TooSoonToCheckOut(
            max(0, int(since_checkin)),
            CHECKOUT_MIN_SECONDS,
            math.ceil(CHECKOUT_MIN_SECONDS - since_checkin),
        )
    return close_session(conn, open_session.id, check_out_time=now)


def scan_student(actor: Actor, raw_token: str | None, *, now: datetime | None = None) -> GateScanResult:
    marker = now or datetime.now()

    try:
        if not actor.is_active or actor.role not in GATE_ROLES:
            raise ActorNotAllowed(actor.role)

        payload = verify_token(raw_token, "student", now=int(marker.timestamp()))
        student_id = payload["sub"]
        event_id = payload["evt"]

        with transaction() as conn:
            student = load_student(conn, student_id)
            event = load_active_event(conn, event_id)
            ensure_event_running(event, marker)

            open_session = find_open_session(conn, student_id=student_id, event_id=event_id)
            state = gate_state(open_session)
            if state is GateState.NO_OPEN_SESSION:
                session = _check_in(conn, student_id=student_id, event_id=event_id, now=marker)
                action: GateAction = "in"
            elif state is GateState.CHECKED_IN:
                session = _check_out(conn, open_session=open_session, now=marker)
                action = "out"
            else:
                raise AssertionError(f"Unhandled gate state: {state}")

            insert_scan_log(
                conn,
                actor=actor,
                scan_type="gate",
                action="gate-check-in" if action == "in" else "gate-check-out",
                scanned_at=marker,
                subject_id=student_id,
                event_id=event_id,
                session_id=session.id,
            )
    except EngagementError as exc:
        logger.warning("Gate scan rejected by %s: %s", actor.id, exc)
        raise

    logger.info(
        "Gate check-%s student=%s event=%s session=%s by %s",
        action,
        student_id,
        event_id,
        session.id,
        actor.id,
    )
    return {
        "action": action,
        "student": student.to_dict(),
        "event": event.to_dict(),
        "attendance": session.to_dict(),
        "timestamp": marker.isoformat(),
    }
