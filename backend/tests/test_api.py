import json
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

import backend.main as main
import backend.routers.core as core
from backend.security import issue_session_token
from backend.tokens import issue_student_token


@pytest.fixture()
def client(seed):
    now = datetime.now()
    seed.user("stu-1", department="CSE")
    seed.user("adm-1", role="admin")
    seed.volunteer("vol-1")
    seed.event("evt-1", start=now - timedelta(days=1), end=now + timedelta(days=1))
    for stall_id in ("stall-a", "stall-b", "stall-c"):
        seed.stall(stall_id, "evt-1", department="CSE")

    with TestClient(main.app) as c:
        yield c


def _headers(subject_id: str, kind: str = "user") -> dict[str, str]:
    token, _claims = issue_session_token(subject_id, kind=kind)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def student_headers(client):
    return _headers("stu-1")


@pytest.fixture()
def volunteer_headers(client):
    return _headers("vol-1", kind="volunteer")


@pytest.fixture()
def admin_headers(client):
    return _headers("adm-1")


def _check_in(client, volunteer_headers, student_headers) -> dict:
    qr = client.get("/student/qrcode/evt-1", headers=student_headers)
    assert qr.status_code == 200
    res = client.post("/scan/student", json={"qrToken": qr.json()["qr_token"]}, headers=volunteer_headers)
    assert res.status_code == 200
    return res.json()


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_engagement_config_is_public(client):
    res = client.get("/config/engagement")
    assert res.status_code == 200
    body = res.json()
    assert body["checkout_min_seconds"] == 30
    assert body["checkin_cooldown_seconds"] == 60
    assert body["min_department_feedbacks"] == 3


def test_debug_dbpath_disabled_by_default(client, admin_headers):
    res = client.get("/debug/dbpath", headers=admin_headers)
    assert res.status_code == 404
    assert res.json()["detail"] == "Not found."


def test_debug_dbpath_requires_session_when_enabled(client, monkeypatch, admin_headers):
    monkeypatch.setattr(core, "ENABLE_DEBUG_ENDPOINTS", True)

    res = client.get("/debug/dbpath")
    assert res.status_code == 401

    res = client.get("/debug/dbpath", headers=admin_headers)
    assert res.status_code == 200
    assert "db_path" in res.json()


def test_endpoints_require_session(client):
    res = client.post("/scan/student", json={"qrToken": "x"})
    assert res.status_code == 401
    assert res.json()["detail"] == "Missing bearer token."

    res = client.get("/student/voting-eligibility/evt-1", headers={"Authorization": "Basic abc"})
    assert res.status_code == 401
    assert res.json()["detail"] == "Invalid authorization scheme."

    res = client.post("/admin/attendance/maintenance", headers={"Authorization": "Bearer nope"})
    assert res.status_code == 401
    assert res.json()["detail"] == "Invalid or expired session token."


def test_qr_token_is_not_a_session_token(client):
    token, _payload = issue_student_token("stu-1", "evt-1")

    res = client.get("/student/attendance/evt-1", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 401


def test_unknown_session_subject(client):
    res = client.get("/student/attendance/evt-1", headers=_headers("nobody"))
    assert res.status_code == 401
    assert res.json()["detail"] == "Unknown session subject."


def test_gate_scan_toggles_and_debounces(client, volunteer_headers, student_headers):
    body = _check_in(client, volunteer_headers, student_headers)
    assert body["action"] == "in"
    assert body["student"]["id"] == "stu-1"
    assert body["attendance"]["status"] == "checked-in"

    qr = client.get("/student/qrcode/evt-1", headers=student_headers).json()["qr_token"]
    res = client.post("/scan/student", json={"qrToken": qr}, headers=volunteer_headers)
    assert res.status_code == 400
    assert res.json()["kind"] == "TooSoonToCheckOut"
    assert res.json()["retry_after_seconds"] > 0


def test_gate_scan_error_statuses(client, volunteer_headers):
    res = client.post("/scan/student", json={}, headers=volunteer_headers)
    assert res.status_code == 400
    assert res.json()["kind"] == "MissingToken"

    res = client.post("/scan/student", json={"qrToken": "garbage"}, headers=volunteer_headers)
    assert res.status_code == 400
    assert res.json()["kind"] == "TokenMalformed"

    ghost, _payload = issue_student_token("ghost", "evt-1")
    res = client.post("/scan/student", json={"qrToken": ghost}, headers=volunteer_headers)
    assert res.status_code == 404
    assert res.json()["kind"] == "SubjectNotFound"


def test_students_cannot_run_the_gate(client, student_headers):
    token, _payload = issue_student_token("stu-1", "evt-1")
    res = client.post("/scan/student", json={"qrToken": token}, headers=student_headers)
    assert res.status_code == 403
    assert res.json()["kind"] == "ActorNotAllowed"


def test_stall_scan_feedback_and_vote_flow(client, volunteer_headers, student_headers, admin_headers):
    _check_in(client, volunteer_headers, student_headers)

    stall_qr = client.get("/admin/stalls/stall-a/qrcode", headers=admin_headers)
    assert stall_qr.status_code == 200
    qr_data = stall_qr.json()["qr_data"]
    assert json.loads(qr_data)["stallId"] == "stall-a"

    res = client.post("/scan/stall", json={"qrToken": qr_data}, headers=student_headers)
    assert res.status_code == 200
    assert res.json()["can_feedback"] is True
    assert res.json()["can_vote"] is False
    assert res.json()["vote_blocked_reason"] == "FeedbackRequired"

    feedback = {"stallId": "stall-a", "eventId": "evt-1", "rating": 5, "comments": "Nice"}
    res = client.post("/student/feedback", json=feedback, headers=student_headers)
    assert res.status_code == 200
    res = client.post("/student/feedback", json=feedback, headers=student_headers)
    assert res.status_code == 409
    assert res.json()["kind"] == "FeedbackAlreadySubmitted"

    res = client.post("/student/vote", json={"stallId": "stall-a", "eventId": "evt-1"}, headers=student_headers)
    assert res.status_code == 403
    assert res.json()["kind"] == "InsufficientFeedback"
    assert res.json()["current"] == 1
    assert res.json()["required"] == 3

    for stall_id in ("stall-b", "stall-c"):
        res = client.post(
            "/student/feedback",
            json={"stallId": stall_id, "eventId": "evt-1", "rating": 4},
            headers=student_headers,
        )
        assert res.status_code == 200

    res = client.get("/student/voting-eligibility/evt-1", headers=student_headers)
    assert res.status_code == 200
    assert res.json()["voting_unlocked"] is True
    assert res.json()["eligible_stall_ids"] == ["stall-a", "stall-b", "stall-c"]

    res = client.post(
        "/student/vote",
        json={"stallId": "stall-a", "eventId": "evt-1", "rank": 1},
        headers=student_headers,
    )
    assert res.status_code == 200
    assert res.json()["rank"] == 1

    res = client.post(
        "/student/vote",
        json={"stallId": "stall-b", "eventId": "evt-1", "rank": 1},
        headers=student_headers,
    )
    assert res.status_code == 409
    assert res.json()["kind"] == "RankAlreadyUsed"


def test_feedback_body_is_validated(client, student_headers):
    res = client.post("/student/feedback", json={"stallId": "stall-a"}, headers=student_headers)
    assert res.status_code == 422


def test_admin_routes_require_admin(client, volunteer_headers):
    res = client.post("/admin/events/evt-1/end", headers=volunteer_headers)
    assert res.status_code == 403
    assert res.json()["kind"] == "ActorNotAllowed"


def test_end_event_nullifies_and_reports(client, volunteer_headers, student_headers, admin_headers):
    _check_in(client, volunteer_headers, student_headers)

    res = client.post("/admin/events/evt-1/end", headers=admin_headers)
    assert res.status_code == 200
    assert res.json()["ok"] is True
    assert res.json()["nullified_sessions"] == 1

    res = client.get("/student/attendance/evt-1", headers=student_headers)
    assert res.status_code == 200
    summary = res.json()
    assert summary["nullified_sessions"] == 1
    assert summary["total_valid_duration"] == 0
    assert summary["current_status"] == "checked-out"

    res = client.get("/student/qrcode/evt-1", headers=student_headers)
    assert res.status_code == 403
    assert res.json()["kind"] == "EventInactive"


def test_attendance_maintenance(client, admin_headers):
    res = client.post("/admin/attendance/maintenance", headers=admin_headers)
    assert res.status_code == 200
    body = res.json()
    assert body["ok"] is True
    assert body["nullified_sessions"] == 0


def test_scan_logs_with_filters(client, volunteer_headers, student_headers):
    _check_in(client, volunteer_headers, student_headers)

    res = client.get("/scan/logs", headers=volunteer_headers)
    assert res.status_code == 200
    body = res.json()
    assert body["total"] == 1
    row = body["rows"][0]
    assert row["action"] == "gate-check-in"
    assert row["actor_id"] == "vol-1"
    assert row["actor_type"] == "volunteer"
    assert row["subject_id"] == "stu-1"

    res = client.get("/scan/logs", params={"action": "stall-scan"}, headers=volunteer_headers)
    assert res.status_code == 200
    assert res.json()["total"] == 0

    res = client.get("/scan/logs", params={"action": "teleport"}, headers=volunteer_headers)
    assert res.status_code == 400
    assert res.json()["detail"] == "Invalid action filter."

    res = client.get("/scan/logs", headers=student_headers)
    assert res.status_code == 403


def test_stall_qrcode_unknown_stall(client, admin_headers):
    res = client.get("/admin/stalls/nope/qrcode", headers=admin_headers)
    assert res.status_code == 404
    assert res.json()["kind"] == "StallNotFound"


def test_student_read_views(client, volunteer_headers, student_headers):
    _check_in(client, volunteer_headers, student_headers)
    for stall_id in ("stall-a", "stall-b", "stall-c"):
        res = client.post(
            "/student/feedback",
            json={"stallId": stall_id, "eventId": "evt-1", "rating": 4},
            headers=student_headers,
        )
        assert res.status_code == 200
    res = client.post("/student/vote", json={"stallId": "stall-b", "eventId": "evt-1"}, headers=student_headers)
    assert res.status_code == 200

    res = client.get("/student/votes", headers=student_headers)
    assert res.status_code == 200
    assert res.json()["count"] == 1
    assert res.json()["rows"][0]["stall"]["id"] == "stall-b"

    res = client.get("/student/feedbacks", params={"event_id": "evt-1"}, headers=student_headers)
    assert res.status_code == 200
    assert res.json()["count"] == 3

    res = client.get("/student/status/evt-1", headers=student_headers)
    assert res.status_code == 200
    body = res.json()
    assert body["is_checked_in"] is True
    assert body["feedbacks_given"] == 3
    assert body["votes_count"] == 1
    assert body["votes"][0]["rank"] == 1

    res = client.get("/student/status/evt-missing", headers=student_headers)
    assert res.status_code == 404
    assert res.json()["kind"] == "EventNotFound"


def test_student_read_views_require_student(client, volunteer_headers):
    res = client.get("/student/votes", headers=volunteer_headers)
    assert res.status_code == 403
    assert res.json()["kind"] == "ActorNotAllowed"
