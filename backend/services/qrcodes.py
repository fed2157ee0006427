from datetime import datetime
from typing import Any

from backend.errors import StallNotFound
from backend.services.lookups import load_active_event, load_student
from backend.tokens import issue_stall_token, issue_student_token
from database.db import get_event, get_stall, read_only


def student_qrcode(student_id: str, event_id: str, *, now: datetime | None = None) -> dict[str, Any]:
    """Fresh gate QR for a student; only issued for an existing, active event."""
    marker = now or datetime.now()
    with read_only() as conn:
        student = load_student(conn, student_id)
        event = load_active_event(conn, event_id)

    token, payload = issue_student_token(student.id, event.id, now=int(marker.timestamp()))
    return {
        "qr_token": token,
        "event": event.to_dict(),
        "issued_at": payload["iat"],
        "expires_at": payload["exp"],
    }


def stall_qrcode(stall_id: str, *, now: datetime | None = None) -> dict[str, Any]:
    marker = now or datetime.now()
    with read_only() as conn:
        stall = get_stall(conn, stall_id)
        if stall is None:
            raise StallNotFound(stall_id)
        event = get_event(conn, stall.event_id)

    token, qr_data = issue_stall_token(stall.id, stall.event_id, now=int(marker.timestamp()))
    return {
        "stall": stall.to_dict(),
        "event": event.to_dict() if event else {"id": stall.event_id, "name": None},
        "qr_token": token,
        "qr_data": qr_data,
    }
