"""
Attendance session store.

All functions take the caller's connection so they run inside the caller's
scoped transaction; none of them commit.
"""

import sqlite3
from datetime import datetime

from database.db import parse_db_stamp, to_db_stamp
from database.models import AttendanceSession, SessionStatus

_SESSION_COLUMNS = """
    id, student_id, event_id, check_in_time, check_out_time, status,
    is_nullified, nullified_reason, nullified_duration, event_stop_time
"""


def _session_from_row(row) -> AttendanceSession:
    (
        row_id,
        student_id,
        event_id,
        check_in_time,
        check_out_time,
        status,
        is_nullified,
        nullified_reason,
        nullified_duration,
        event_stop_time,
    ) = row
    return AttendanceSession(
        id=int(row_id),
        student_id=str(student_id),
        event_id=str(event_id),
        check_in_time=parse_db_stamp(check_in_time),
        check_out_time=parse_db_stamp(check_out_time),
        status=SessionStatus(status),
        is_nullified=bool(is_nullified),
        nullified_reason=nullified_reason,
        nullified_duration=int(nullified_duration) if nullified_duration is not None else None,
        event_stop_time=parse_db_stamp(event_stop_time),
    )


def get_session(conn: sqlite3.Connection, session_id: int) -> AttendanceSession | None:
    cur = conn.cursor()
    cur.execute(f"SELECT {_SESSION_COLUMNS} FROM attendance_sessions WHERE id = ?", (session_id,))
    row = cur.fetchone()
    return _session_from_row(row) if row else None


def find_open_session(conn: sqlite3.Connection, *, student_id: str, event_id: str) -> AttendanceSession | None:
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT {_SESSION_COLUMNS}
        FROM attendance_sessions
        WHERE student_id = ? AND event_id = ? AND status = ?
        """,
        (student_id, event_id, SessionStatus.CHECKED_IN.value),
    )
    row = cur.fetchone()
    return _session_from_row(row) if row else None


def find_last_checkout(conn: sqlite3.Connection, *, student_id: str, event_id: str) -> AttendanceSession | None:
    """Most recent session closed by a gate checkout. Nullified sessions are skipped."""
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT {_SESSION_COLUMNS}
        FROM attendance_sessions
        WHERE student_id = ?
          AND event_id = ?
          AND status = ?
          AND check_out_time IS NOT NULL
          AND is_nullified = 0
        ORDER BY check_out_time DESC, id DESC
        LIMIT 1
        """,
        (student_id, event_id, SessionStatus.CHECKED_OUT.value),
    )
    row = cur.fetchone()
    return _session_from_row(row) if row else None


def create_session(
    conn: sqlite3.Connection,
    *,
    student_id: str,
    event_id: str,
    check_in_time: datetime,
) -> AttendanceSession:
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO attendance_sessions (student_id, event_id, check_in_time, status)
        VALUES (?, ?, ?, ?)
        """,
        (student_id, event_id, to_db_stamp(check_in_time), SessionStatus.CHECKED_IN.value),
    )
    return get_session(conn, int(cur.lastrowid))


def close_session(conn: sqlite3.Connection, session_id: int, *, check_out_time: datetime) -> AttendanceSession:
    conn.execute(
        """
        UPDATE attendance_sessions
        SET check_out_time = ?,
            status = ?
        WHERE id = ? AND status = ?
        """,
        (
            to_db_stamp(check_out_time),
            SessionStatus.CHECKED_OUT.value,
            session_id,
            SessionStatus.CHECKED_IN.value,
        ),
    )
    return get_session(conn, session_id)


def list_open_sessions(conn: sqlite3.Connection, *, event_id: str) -> list[AttendanceSession]:
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT {_SESSION_COLUMNS}
        FROM attendance_sessions
        WHERE event_id = ? AND status = ?
        ORDER BY id ASC
        """,
        (event_id, SessionStatus.CHECKED_IN.value),
    )
    return [_session_from_row(row) for row in cur.fetchall()]


def nullify_session(
    conn: sqlite3.Connection,
    session_id: int,
    *,
    check_out_time: datetime,
    event_stop_time: datetime,
    nullified_duration: int,
    reason: str,
) -> bool:
    """Force-close an open session. Returns False if it was no longer open."""
    cur = conn.cursor()
    cur.execute(
        """
        UPDATE attendance_sessions
        SET status = ?,
            check_out_time = ?,
            is_nullified = 1,
            nullified_reason = ?,
            nullified_duration = ?,
            event_stop_time = ?
        WHERE id = ? AND status = ?
        """,
        (
            SessionStatus.CHECKED_OUT.value,
            to_db_stamp(check_out_time),
            reason,
            max(0, int(nullified_duration)),
            to_db_stamp(event_stop_time),
            session_id,
            SessionStatus.CHECKED_IN.value,
        ),
    )
    return cur.rowcount == 1


def list_sessions(conn: sqlite3.Connection, *, student_id: str, event_id: str) -> list[AttendanceSession]:
    cur = conn.cursor()
    cur.execute(
        f"""
        SELECT {_SESSION_COLUMNS}
        FROM attendance_sessions
        WHERE student_id = ? AND event_id = ?
        ORDER BY check_in_time ASC, id ASC
        """,
        (student_id, event_id),
    )
    return [_session_from_row(row) for row in cur.fetchall()]
