import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Literal

from backend.config import DB_BUSY_TIMEOUT_SECONDS, DB_PATH, DEFAULT_MAX_VOTES_PER_STUDENT
from database.models import Actor, ActorKind, Event, Stall


ScanType = Literal["gate", "stall"]
ScanAction = Literal["gate-check-in", "gate-check-out", "stall-scan"]
ScanStatus = Literal["success", "failed"]


def connect_db():
    conn = sqlite3.connect(
        str(DB_PATH),
        check_same_thread=False,
        timeout=DB_BUSY_TIMEOUT_SECONDS,
        isolation_level=None,
    )
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    """
    Scoped write transaction.

    BEGIN IMMEDIATE takes the write lock before the first read, so every
    validation query and the final write run against a state no other writer
    can change underneath. Leaving the block normally commits; any exception
    rolls back and propagates.
    """
    conn = connect_db()
    try:
        conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.execute("COMMIT")
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    finally:
        conn.close()


@contextmanager
def read_only() -> Iterator[sqlite3.Connection]:
    conn = connect_db()
    try:
        yield conn
    finally:
        conn.close()


def create_tables():
    conn = connect_db()
    cursor = conn.cursor()

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT UNIQUE,
        role TEXT NOT NULL DEFAULT 'student'
            CHECK (role IN ('student', 'volunteer', 'admin', 'stall_owner')),
        department TEXT,
        roll_number TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    # Volunteers are provisioned separately from user accounts.
    cursor.execute("""
    CREATE TABLE IF NOT EXISTS volunteers (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        email TEXT UNIQUE,
        department TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS events (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        start_date TEXT,
        end_date TEXT,
        is_active INTEGER NOT NULL DEFAULT 0,
        allow_feedback INTEGER NOT NULL DEFAULT 1,
        allow_voting INTEGER NOT NULL DEFAULT 1,
        max_votes_per_student INTEGER NOT NULL DEFAULT 3,
        manually_ended INTEGER NOT NULL DEFAULT 0,
        ended_at TEXT,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS stalls (
        id TEXT PRIMARY KEY,
        event_id TEXT NOT NULL,
        name TEXT NOT NULL,
        category TEXT,
        department TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        scan_count INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        FOREIGN KEY (event_id) REFERENCES events(id) ON DELETE CASCADE
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS attendance_sessions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        student_id TEXT NOT NULL,
        event_id TEXT NOT NULL,
        check_in_time TEXT NOT NULL,
        check_out_time TEXT,
        status TEXT NOT NULL DEFAULT 'checked-in'
            CHECK (status IN ('checked-in', 'checked-out')),
        is_nullified INTEGER NOT NULL DEFAULT 0,
        nullified_reason TEXT,
        nullified_duration INTEGER,
        event_stop_time TEXT,
        FOREIGN KEY (student_id) REFERENCES users(id) ON DELETE CASCADE,
        FOREIGN KEY (event_id) REFERENCES events(id) ON DELETE CASCADE,
        CHECK (check_out_time IS NULL OR check_out_time >= check_in_time)
    )
    """)
    # At most one open session per (student, event).
    cursor.execute("""
    CREATE UNIQUE INDEX IF NOT EXISTS idx_attendance_one_open
    ON attendance_sessions(student_id, event_id)
    WHERE status = 'checked-in'
    """)
    cursor.execute("""
    CREATE INDEX IF NOT EXISTS idx_attendance_event_status
    ON attendance_sessions(event_id, status)
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS scan_logs (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        actor_id TEXT NOT NULL,
        actor_type TEXT NOT NULL CHECK (actor_type IN ('user', 'volunteer')),
        subject_id TEXT,
        event_id TEXT,
        stall_id TEXT,
        session_id INTEGER,
        scan_type TEXT NOT NULL CHECK (scan_type IN ('gate', 'stall')),
        action TEXT NOT NULL
            CHECK (action IN ('gate-check-in', 'gate-check-out', 'stall-scan')),
        status TEXT NOT NULL DEFAULT 'success' CHECK (status IN ('success', 'failed')),
        error_message TEXT,
        scanned_at TEXT NOT NULL
    )
    """)
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_scan_logs_event ON scan_logs(event_id, scanned_at)")

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS feedbacks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        student_id TEXT NOT NULL,
        stall_id TEXT NOT NULL,
        event_id TEXT NOT NULL,
        rating INTEGER NOT NULL CHECK (rating BETWEEN 1 AND 5),
        comments TEXT,
        created_at TEXT NOT NULL,
        FOREIGN KEY (student_id) REFERENCES users(id) ON DELETE CASCADE,
        FOREIGN KEY (stall_id) REFERENCES stalls(id) ON DELETE CASCADE,
        FOREIGN KEY (event_id) REFERENCES events(id) ON DELETE CASCADE,
        UNIQUE(student_id, stall_id, event_id)
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS votes (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        student_id TEXT NOT NULL,
        stall_id TEXT NOT NULL,
        event_id TEXT NOT NULL,
        rank INTEGER NOT NULL CHECK (rank >= 1),
        created_at TEXT NOT NULL,
        FOREIGN KEY (student_id) REFERENCES users(id) ON DELETE CASCADE,
        FOREIGN KEY (stall_id) REFERENCES stalls(id) ON DELETE CASCADE,
        FOREIGN KEY (event_id) REFERENCES events(id) ON DELETE CASCADE,
        UNIQUE(student_id, stall_id, event_id),
        UNIQUE(student_id, event_id, rank)
    )
    """)

    conn.commit()
    conn.close()


# -----------------------------
# Timestamps
# -----------------------------
def to_db_stamp(value: datetime) -> str:
    return value.isoformat(sep=" ", timespec="microseconds")


def parse_db_stamp(value: str | None) -> datetime | None:
    """Parse a stored ISO timestamp into a naive local datetime."""
    if not value:
        return None
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


# -----------------------------
# Lookups (owned by admin CRUD)
# -----------------------------
def get_user(conn: sqlite3.Connection, user_id: str) -> Actor | None:
    cur = conn.cursor()
    cur.execute(
        """
        SELECT id, name, role, department, roll_number, is_active
        FROM users
        WHERE id = ?
        """,
        (user_id,),
    )
    row = cur.fetchone()
    if not row:
        return None
    row_id, name, role, department, roll_number, is_active = row
    return Actor(
        id=str(row_id),
        kind="user",
        role=str(role),
        is_active=bool(is_active),
        name=name,
        department=department,
        roll_number=roll_number,
    )


def get_volunteer(conn: sqlite3.Connection, volunteer_id: str) -> Actor | None:
    cur = conn.cursor()
    cur.execute(
        """
        SELECT id, name, department, is_active
        FROM volunteers
        WHERE id = ?
        """,
        (volunteer_id,),
    )
    row = cur.fetchone()
    if not row:
        return None
    row_id, name, department, is_active = row
    return Actor(
        id=str(row_id),
        kind="volunteer",
        role="volunteer",
        is_active=bool(is_active),
        name=name,
        department=department,
    )


def resolve_actor(conn: sqlite3.Connection, actor_id: str, kind: ActorKind = "user") -> Actor | None:
    if kind == "volunteer":
        return get_volunteer(conn, actor_id)
    return get_user(conn, actor_id)


def get_event(conn: sqlite3.Connection, event_id: str) -> Event | None:
    cur = conn.cursor()
    cur.execute(
        """
        SELECT id, name, start_date, end_date, is_active, allow_feedback,
               allow_voting, max_votes_per_student, manually_ended
        FROM events
        WHERE id = ?
        """,
        (event_id,),
    )
    row = cur.fetchone()
    if not row:
        return None
    (
        row_id,
        name,
        start_date,
        end_date,
        is_active,
        allow_feedback,
        allow_voting,
        max_votes,
        manually_ended,
    ) = row
    return Event(
        id=str(row_id),
        name=name,
        start_date=parse_db_stamp(start_date),
        end_date=parse_db_stamp(end_date),
        is_active=bool(is_active),
        allow_feedback=bool(allow_feedback),
        allow_voting=bool(allow_voting),
        max_votes_per_student=int(max_votes) if max_votes else DEFAULT_MAX_VOTES_PER_STUDENT,
        manually_ended=bool(manually_ended),
    )


def get_stall(conn: sqlite3.Connection, stall_id: str) -> Stall | None:
    cur = conn.cursor()
    cur.execute(
        """
        SELECT id, event_id, name, category, department, is_active, scan_count
        FROM stalls
        WHERE id = ?
        """,
        (stall_id,),
    )
    row = cur.fetchone()
    if not row:
        return None
    row_id, event_id, name, category, department, is_active, scan_count = row
    return Stall(
        id=str(row_id),
        event_id=str(event_id),
        name=name,
        category=category,
        department=department,
        is_active=bool(is_active),
        scan_count=int(scan_count or 0),
    )


def increment_stall_scan_count(conn: sqlite3.Connection, stall_id: str) -> int:
    cur = conn.cursor()
    cur.execute("UPDATE stalls SET scan_count = scan_count + 1 WHERE id = ?", (stall_id,))
    cur.execute("SELECT scan_count FROM stalls WHERE id = ?", (stall_id,))
    row = cur.fetchone()
    return int(row[0]) if row else 0


def mark_event_ended(conn: sqlite3.Connection, event_id: str, ended_at: datetime) -> None:
    conn.execute(
        """
        UPDATE events
        SET is_active = 0,
            manually_ended = 1,
            ended_at = COALESCE(ended_at, ?)
        WHERE id = ?
        """,
        (to_db_stamp(ended_at), event_id),
    )


def get_event_ids_with_open_sessions(conn: sqlite3.Connection) -> list[str]:
    cur = conn.cursor()
    cur.execute(
        """
        SELECT DISTINCT event_id
        FROM attendance_sessions
        WHERE status = 'checked-in'
        ORDER BY event_id
        """
    )
    return [str(row[0]) for row in cur.fetchall()]


# -----------------------------
# Scan log (append-only)
# -----------------------------
def insert_scan_log(
    conn: sqlite3.Connection,
    *,
    actor: Actor,
    scan_type: ScanType,
    action: ScanAction,
    scanned_at: datetime,
    subject_id: str | None = None,
    event_id: str | None = None,
    stall_id: str | None = None,
    session_id: int | None = None,
    status: ScanStatus = "success",
    error_message: str | None = None,
) -> int:
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO scan_logs (
            actor_id,
            actor_type,
            subject_id,
            event_id,
            stall_id,
            session_id,
            scan_type,
            action,
            status,
            error_message,
            scanned_at
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            actor.id,
            actor.kind,
            subject_id,
            event_id,
            stall_id,
            session_id,
            scan_type,
            action,
            status,
            error_message,
            to_db_stamp(scanned_at),
        ),
    )
    return int(cur.lastrowid)


def get_scan_logs(
    *,
    event_id: str | None = None,
    actor_id: str | None = None,
    subject_id: str | None = None,
    action: ScanAction | None = None,
    status: ScanStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> list[dict[str, Any]]:
    where_sql, params = _build_scan_logs_where_clause(
        event_id=event_id,
        actor_id=actor_id,
        subject_id=subject_id,
        action=action,
        status=status,
    )

    safe_limit = max(1, min(int(limit), 500))
    safe_offset = max(0, int(offset))

    query = f"""
        SELECT
            sl.id,
            sl.actor_id,
            sl.actor_type,
            sl.subject_id,
            u.name,
            u.roll_number,
            u.department,
            sl.event_id,
            sl.stall_id,
            s.name,
            sl.session_id,
            sl.scan_type,
            sl.action,
            sl.status,
            sl.error_message,
            sl.scanned_at
        FROM scan_logs sl
        LEFT JOIN users u ON u.id = sl.subject_id
        LEFT JOIN stalls s ON s.id = sl.stall_id
        WHERE {where_sql}
        ORDER BY sl.scanned_at DESC, sl.id DESC
        LIMIT ?
        OFFSET ?
    """
    params.extend([safe_limit, safe_offset])

    with read_only() as conn:
        cur = conn.cursor()
        cur.execute(query, params)
        rows = cur.fetchall()

    return [
        {
            "id": row[0],
            "actor_id": row[1],
            "actor_type": row[2],
            "subject_id": row[3],
            "subject_name": row[4],
            "roll_number": row[5],
            "department": row[6],
            "event_id": row[7],
            "stall_id": row[8],
            "stall_name": row[9],
            "session_id": row[10],
            "scan_type": row[11],
            "action": row[12],
            "status": row[13],
            "error_message": row[14],
            "scanned_at": row[15],
        }
        for row in rows
    ]


def get_scan_logs_total(
    *,
    event_id: str | None = None,
    actor_id: str | None = None,
    subject_id: str | None = None,
    action: ScanAction | None = None,
    status: ScanStatus | None = None,
) -> int:
    where_sql, params = _build_scan_logs_where_clause(
        event_id=event_id,
        actor_id=actor_id,
        subject_id=subject_id,
        action=action,
        status=status,
    )
    with read_only() as conn:
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT COUNT(1)
            FROM scan_logs sl
            WHERE {where_sql}
            """,
            params,
        )
        row = cur.fetchone()
    return int(row[0] or 0) if row else 0


def _build_scan_logs_where_clause(
    *,
    event_id: str | None = None,
    actor_id: str | None = None,
    subject_id: str | None = None,
    action: ScanAction | None = None,
    status: ScanStatus | None = None,
) -> tuple[str, list[Any]]:
    where = ["1=1"]
    params: list[Any] = []

    if event_id is not None:
        where.append("sl.event_id = ?")
        params.append(event_id)
    if actor_id is not None:
        where.append("sl.actor_id = ?")
        params.append(actor_id)
    if subject_id is not None:
        where.append("sl.subject_id = ?")
        params.append(subject_id)
    if action is not None:
        where.append("sl.action = ?")
        params.append(action)
    if status is not None:
        where.append("sl.status = ?")
        params.append(status)

    return " AND ".join(where), params


# -----------------------------
# Feedback
# -----------------------------
def feedback_exists(conn: sqlite3.Connection, *, student_id: str, stall_id: str, event_id: str) -> bool:
    cur = conn.cursor()
    cur.execute(
        """
        SELECT 1
        FROM feedbacks
        WHERE student_id = ? AND stall_id = ? AND event_id = ?
        """,
        (student_id, stall_id, event_id),
    )
    return cur.fetchone() is not None


def insert_feedback(
    conn: sqlite3.Connection,
    *,
    student_id: str,
    stall_id: str,
    event_id: str,
    rating: int,
    comments: str | None,
    created_at: datetime,
) -> int:
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO feedbacks (student_id, stall_id, event_id, rating, comments, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (student_id, stall_id, event_id, rating, comments, to_db_stamp(created_at)),
    )
    return int(cur.lastrowid)


def get_feedback_stall_departments(
    conn: sqlite3.Connection,
    *,
    student_id: str,
    event_id: str,
) -> list[tuple[str, str | None, bool]]:
    """(stall_id, stall department, stall is_active) for every stall the student reviewed in this event."""
    cur = conn.cursor()
    cur.execute(
        """
        SELECT DISTINCT f.stall_id, s.department, s.is_active
        FROM feedbacks f
        JOIN stalls s ON s.id = f.stall_id
        WHERE f.student_id = ? AND f.event_id = ?
        ORDER BY f.stall_id
        """,
        (student_id, event_id),
    )
    return [(str(row[0]), row[1], bool(row[2])) for row in cur.fetchall()]


def list_student_feedbacks(*, student_id: str, event_id: str | None = None) -> list[dict[str, Any]]:
    where = ["f.student_id = ?"]
    params: list[Any] = [student_id]
    if event_id is not None:
        where.append("f.event_id = ?")
        params.append(event_id)

    where_sql = " AND ".join(where)

    with read_only() as conn:
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT f.id, f.rating, f.comments, f.created_at,
                   s.id, s.name, s.category, e.id, e.name
            FROM feedbacks f
            JOIN stalls s ON s.id = f.stall_id
            JOIN events e ON e.id = f.event_id
            WHERE {where_sql}
            ORDER BY f.created_at DESC, f.id DESC
            """,
            params,
        )
        rows = cur.fetchall()

    return [
        {
            "id": row[0],
            "rating": row[1],
            "comments": row[2],
            "created_at": row[3],
            "stall": {"id": row[4], "name": row[5], "category": row[6]},
            "event": {"id": row[7], "name": row[8]},
        }
        for row in rows
    ]


def count_student_feedbacks(conn: sqlite3.Connection, *, student_id: str, event_id: str) -> int:
    cur = conn.cursor()
    cur.execute(
        "SELECT COUNT(1) FROM feedbacks WHERE student_id = ? AND event_id = ?",
        (student_id, event_id),
    )
    row = cur.fetchone()
    return int(row[0] or 0) if row else 0


# -----------------------------
# Votes
# -----------------------------
def vote_exists(conn: sqlite3.Connection, *, student_id: str, stall_id: str, event_id: str) -> bool:
    cur = conn.cursor()
    cur.execute(
        """
        SELECT 1
        FROM votes
        WHERE student_id = ? AND stall_id = ? AND event_id = ?
        """,
        (student_id, stall_id, event_id),
    )
    return cur.fetchone() is not None


def get_votes(conn: sqlite3.Connection, *, student_id: str, event_id: str) -> list[tuple[str, int]]:
    """(stall_id, rank) pairs, ordered by rank."""
    cur = conn.cursor()
    cur.execute(
        """
        SELECT stall_id, rank
        FROM votes
        WHERE student_id = ? AND event_id = ?
        ORDER BY rank
        """,
        (student_id, event_id),
    )
    return [(str(row[0]), int(row[1])) for row in cur.fetchall()]


def insert_vote(
    conn: sqlite3.Connection,
    *,
    student_id: str,
    stall_id: str,
    event_id: str,
    rank: int,
    created_at: datetime,
) -> int:
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO votes (student_id, stall_id, event_id, rank, created_at)
        VALUES (?, ?, ?, ?, ?)
        """,
        (student_id, stall_id, event_id, rank, to_db_stamp(created_at)),
    )
    return int(cur.lastrowid)


def list_student_votes(*, student_id: str, event_id: str | None = None) -> list[dict[str, Any]]:
    where = ["v.student_id = ?"]
    params: list[Any] = [student_id]
    if event_id is not None:
        where.append("v.event_id = ?")
        params.append(event_id)

    where_sql = " AND ".join(where)

    with read_only() as conn:
        cur = conn.cursor()
        cur.execute(
            f"""
            SELECT v.id, v.rank, v.created_at,
                   s.id, s.name, s.category, e.id, e.name
            FROM votes v
            JOIN stalls s ON s.id = v.stall_id
            JOIN events e ON e.id = v.event_id
            WHERE {where_sql}
            ORDER BY v.event_id, v.rank
            """,
            params,
        )
        rows = cur.fetchall()

    return [
        {
            "id": row[0],
            "rank": row[1],
            "created_at": row[2],
            "stall": {"id": row[3], "name": row[4], "category": row[5]},
            "event": {"id": row[6], "name": row[7]},
        }
        for row in rows
    ]
