from datetime import datetime

import pytest

from backend.errors import (
    ActorNotAllowed,
    EventInactive,
    NotCheckedIn,
    StallInactive,
    StallNotFound,
    TokenTypeMismatch,
)
from backend.services.stall_scan import scan_stall
from backend.tokens import issue_stall_token, issue_student_token, sign_token
from database.models import Actor

NOW = datetime(2026, 3, 10, 10, 0, 0)
ISSUED_AT = int(NOW.timestamp())

STUDENT = Actor(id="stu-1", kind="user", role="student", is_active=True, department="CSE")


@pytest.fixture()
def expo(seed):
    seed.user("stu-1", department="CSE")
    seed.event("evt-1")
    seed.stall("stall-a", "evt-1", department="CSE")
    seed.open_session("stu-1", "evt-1")
    return seed


def _scan_count(seed, stall_id: str = "stall-a") -> int:
    return seed.count("SELECT scan_count FROM stalls WHERE id = ?", (stall_id,))


def test_scan_records_visit(expo):
    token, _qr = issue_stall_token("stall-a", "evt-1", now=ISSUED_AT)

    result = scan_stall(STUDENT, token, now=NOW)

    assert result["stall"]["id"] == "stall-a"
    assert result["stall"]["scan_count"] == 1
    assert result["can_feedback"] is True
    assert result["can_vote"] is False
    assert result["vote_blocked_reason"] == "FeedbackRequired"
    assert _scan_count(expo) == 1
    assert expo.count("SELECT COUNT(1) FROM scan_logs WHERE action = 'stall-scan' AND stall_id = 'stall-a'") == 1


def test_printed_json_payload_is_accepted(expo):
    _token, qr_data = issue_stall_token("stall-a", "evt-1", now=ISSUED_AT)

    scan_stall(STUDENT, qr_data, now=NOW)
    scan_stall(STUDENT, qr_data, now=NOW)

    assert _scan_count(expo) == 2


def test_can_feedback_is_false_after_feedback(expo):
    expo.feedback("stu-1", "stall-a", "evt-1")
    token, _qr = issue_stall_token("stall-a", "evt-1", now=ISSUED_AT)

    result = scan_stall(STUDENT, token, now=NOW)

    assert result["can_feedback"] is False
    assert result["feedback_blocked_reason"] == "FeedbackAlreadySubmitted"
    assert result["vote_blocked_reason"] == "InsufficientFeedback"


def test_can_vote_when_eligible(expo):
    for stall_id in ("stall-b", "stall-c"):
        expo.stall(stall_id, "evt-1", department="cse")
        expo.feedback("stu-1", stall_id, "evt-1")
    expo.feedback("stu-1", "stall-a", "evt-1")
    token, _qr = issue_stall_token("stall-a", "evt-1", now=ISSUED_AT)

    result = scan_stall(STUDENT, token, now=NOW)

    assert result["can_vote"] is True
    assert "vote_blocked_reason" not in result


def test_other_department_stall_reports_mismatch(expo):
    expo.stall("stall-x", "evt-1", department="ECE")
    token, _qr = issue_stall_token("stall-x", "evt-1", now=ISSUED_AT)

    result = scan_stall(STUDENT, token, now=NOW)

    assert result["can_feedback"] is True
    assert result["vote_blocked_reason"] == "DepartmentMismatch"


def test_student_must_be_checked_in(expo):
    expo.user("stu-2")
    token, _qr = issue_stall_token("stall-a", "evt-1", now=ISSUED_AT)
    outsider = Actor(id="stu-2", kind="user", role="student", is_active=True)

    with pytest.raises(NotCheckedIn):
        scan_stall(outsider, token, now=NOW)

    assert _scan_count(expo) == 0
    assert expo.count("SELECT COUNT(1) FROM scan_logs") == 0


def test_student_token_is_rejected(expo):
    token, _payload = issue_student_token("stu-1", "evt-1", now=ISSUED_AT)

    with pytest.raises(TokenTypeMismatch):
        scan_stall(STUDENT, token, now=NOW)


def test_unknown_stall(expo):
    token = sign_token("stall-missing", "evt-1", "stall", 3600, now=ISSUED_AT)

    with pytest.raises(StallNotFound):
        scan_stall(STUDENT, token, now=NOW)


def test_stall_from_another_event(expo):
    expo.event("evt-2")
    token = sign_token("stall-a", "evt-2", "stall", 3600, now=ISSUED_AT)

    with pytest.raises(StallNotFound):
        scan_stall(STUDENT, token, now=NOW)


def test_inactive_stall(expo):
    expo.stall("stall-off", "evt-1", is_active=False)
    token, _qr = issue_stall_token("stall-off", "evt-1", now=ISSUED_AT)

    with pytest.raises(StallInactive):
        scan_stall(STUDENT, token, now=NOW)


def test_inactive_event(expo):
    expo.event("evt-off", is_active=False)
    expo.stall("stall-z", "evt-off")
    token, _qr = issue_stall_token("stall-z", "evt-off", now=ISSUED_AT)

    with pytest.raises(EventInactive):
        scan_stall(STUDENT, token, now=NOW)


def test_volunteer_cannot_scan_stalls(expo):
    token, _qr = issue_stall_token("stall-a", "evt-1", now=ISSUED_AT)
    volunteer = Actor(id="vol-1", kind="volunteer", role="volunteer", is_active=True)

    with pytest.raises(ActorNotAllowed):
        scan_stall(volunteer, token, now=NOW)


def test_can_feedback_is_false_when_event_disallows_feedback(seed):
    seed.user("stu-1", department="CSE")
    seed.event("evt-closed", allow_feedback=False)
    seed.stall("stall-a", "evt-closed", department="CSE")
    seed.open_session("stu-1", "evt-closed")
    token, _qr = issue_stall_token("stall-a", "evt-closed", now=ISSUED_AT)

    result = scan_stall(STUDENT, token, now=NOW)

    assert result["can_feedback"] is False
    assert result["feedback_blocked_reason"] == "FeedbackNotAllowed"


def test_feedback_blocked_reason_absent_when_feedback_is_open(expo):
    token, _qr = issue_stall_token("stall-a", "evt-1", now=ISSUED_AT)

    result = scan_stall(STUDENT, token, now=NOW)

    assert result["can_feedback"] is True
    assert "feedback_blocked_reason" not in result
