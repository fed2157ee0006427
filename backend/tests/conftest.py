from datetime import datetime, timedelta

import pytest

import backend.config as config
import database.db as db

NOW = datetime(2026, 3, 10, 10, 0, 0)


@pytest.fixture()
def database(tmp_path, monkeypatch):
    test_db = tmp_path / "expogate_test.db"

    # Point DB to a temp file for isolation.
    monkeypatch.setattr(config, "DB_PATH", test_db)
    monkeypatch.setattr(db, "DB_PATH", test_db)
    monkeypatch.setattr(config, "SIGNING_KEY", "test-signing-key")
    monkeypatch.setattr(config, "QR_SECRET", "test-qr-secret")

    db.create_tables()
    return test_db


class Seeder:
    """SQL seed helpers; the core only reads these tables."""

    def _execute(self, sql: str, params: tuple) -> int:
        conn = db.connect_db()
        cur = conn.cursor()
        cur.execute(sql, params)
        row_id = int(cur.lastrowid)
        conn.commit()
        conn.close()
        return row_id

    def user(
        self,
        user_id: str,
        *,
        role: str = "student",
        department: str | None = "CSE",
        is_active: bool = True,
        name: str | None = None,
    ) -> str:
        self._execute(
            """
            INSERT INTO users (id, name, email, role, department, roll_number, is_active)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                user_id,
                name or user_id.title(),
                f"{user_id}@example.edu",
                role,
                department,
                f"R-{user_id}",
                int(is_active),
            ),
        )
        return user_id

    def volunteer(self, volunteer_id: str, *, is_active: bool = True) -> str:
        self._execute(
            """
            INSERT INTO volunteers (id, name, email, is_active)
            VALUES (?, ?, ?, ?)
            """,
            (volunteer_id, volunteer_id.title(), f"{volunteer_id}@example.edu", int(is_active)),
        )
        return volunteer_id

    def event(
        self,
        event_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        is_active: bool = True,
        allow_feedback: bool = True,
        allow_voting: bool = True,
        max_votes: int = 3,
    ) -> str:
        start = start or NOW - timedelta(hours=2)
        end = end or NOW + timedelta(hours=8)
        self._execute(
            """
            INSERT INTO events (
                id, name, start_date, end_date, is_active,
                allow_feedback, allow_voting, max_votes_per_student
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event_id,
                f"Expo {event_id}",
                db.to_db_stamp(start),
                db.to_db_stamp(end),
                int(is_active),
                int(allow_feedback),
                int(allow_voting),
                max_votes,
            ),
        )
        return event_id

    def stall(
        self,
        stall_id: str,
        event_id: str,
        *,
        department: str | None = "CSE",
        is_active: bool = True,
    ) -> str:
        self._execute(
            """
            INSERT INTO stalls (id, event_id, name, category, department, is_active)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (stall_id, event_id, f"Stall {stall_id}", "project", department, int(is_active)),
        )
        return stall_id

    def open_session(self, student_id: str, event_id: str, *, check_in_time: datetime = NOW) -> int:
        return self._execute(
            """
            INSERT INTO attendance_sessions (student_id, event_id, check_in_time, status)
            VALUES (?, ?, ?, 'checked-in')
            """,
            (student_id, event_id, db.to_db_stamp(check_in_time)),
        )

    def closed_session(
        self,
        student_id: str,
        event_id: str,
        *,
        check_in_time: datetime,
        check_out_time: datetime,
    ) -> int:
        return self._execute(
            """
            INSERT INTO attendance_sessions (student_id, event_id, check_in_time, check_out_time, status)
            VALUES (?, ?, ?, ?, 'checked-out')
            """,
            (student_id, event_id, db.to_db_stamp(check_in_time), db.to_db_stamp(check_out_time)),
        )

    def feedback(self, student_id: str, stall_id: str, event_id: str, *, rating: int = 4) -> int:
        return self._execute(
            """
            INSERT INTO feedbacks (student_id, stall_id, event_id, rating, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (student_id, stall_id, event_id, rating, db.to_db_stamp(NOW)),
        )

    def count(self, sql: str, params: tuple = ()) -> int:
        conn = db.connect_db()
        try:
            row = conn.execute(sql, params).fetchone()
        finally:
            conn.close()
        return int(row[0])


@pytest.fixture()
def seed(database):
    return Seeder()
