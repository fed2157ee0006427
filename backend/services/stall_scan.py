import logging
from datetime import datetime
from typing import Any, TypedDict

from backend.errors import ActorNotAllowed, EngagementError, NotCheckedIn, StallNotFound
from backend.services.engagement import feedback_blocked_reason, is_checked_in, vote_blocked_reason
from backend.services.lookups import load_active_event, load_active_stall, load_student
from backend.tokens import extract_stall_token, verify_token
from database.db import increment_stall_scan_count, insert_scan_log, transaction
from database.models import Actor

logger = logging.getLogger(__name__)


class StallScanResult(TypedDict, total=False):
    stall: dict[str, Any]
    event: dict[str, Any]
    can_feedback: bool
    feedback_blocked_reason: str | None
    can_vote: bool
    vote_blocked_reason: str | None
    timestamp: str


def scan_stall(actor: Actor, raw_token: str | None, *, now: datetime | None = None) -> StallScanResult:
    """
    A checked-in student scans a stall's printed QR.

    Records the visit and tells the client whether feedback and voting are
    open for this stall. Accepts the bare token or the printed JSON payload.
    """
    marker = now or datetime.now()

    try:
        if actor.kind != "user":
            raise ActorNotAllowed(actor.role)

        payload = verify_token(extract_stall_token(raw_token), "stall", now=int(marker.timestamp()))
        stall_id = payload["sub"]
        event_id = payload["evt"]

        with transaction() as conn:
            student = load_student(conn, actor.id)
            stall = load_active_stall(conn, stall_id)
            if stall.event_id != event_id:
                raise StallNotFound(stall_id, message="This stall does not belong to the event.")
            event = load_active_event(conn, event_id)
            if not is_checked_in(conn, student.id, event.id):
                raise NotCheckedIn(event.id)

            scan_count = increment_stall_scan_count(conn, stall.id)
            insert_scan_log(
                conn,
                actor=actor,
                scan_type="stall",
                action="stall-scan",
                scanned_at=marker,
                subject_id=student.id,
                event_id=event.id,
                stall_id=stall.id,
            )

            feedback_blocked = feedback_blocked_reason(conn, student=student, stall=stall, event=event)
            blocked = vote_blocked_reason(conn, student=student, stall=stall, event=event)
    except EngagementError as exc:
        logger.warning("Stall scan rejected for %s: %s", actor.id, exc)
        raise

    logger.info("Stall scan student=%s stall=%s event=%s count=%s", student.id, stall.id, event.id, scan_count)
    result: StallScanResult = {
        "stall": {**stall.to_dict(), "scan_count": scan_count},
        "event": event.to_dict(),
        "can_feedback": feedback_blocked is None,
        "can_vote": blocked is None,
        "timestamp": marker.isoformat(),
    }
    if feedback_blocked is not None:
        result["feedback_blocked_reason"] = feedback_blocked
    if blocked is not None:
        result["vote_blocked_reason"] = blocked
    return result
