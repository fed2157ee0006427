import sqlite3
from datetime import datetime

from backend.errors import (
    EventEnded,
    EventInactive,
    EventNotFound,
    EventNotStarted,
    RoleMismatch,
    StallInactive,
    StallNotFound,
    SubjectInactive,
    SubjectNotFound,
)
from database.db import get_event, get_stall, get_user
from database.models import Actor, Event, Stall


def load_student(conn: sqlite3.Connection, student_id: str) -> Actor:
    student = get_user(conn, student_id)
    if student is None:
        raise SubjectNotFound(student_id)
    if not student.is_active:
        raise SubjectInactive(student_id)
    if student.role != "student":
        raise RoleMismatch("student", student.role)
    return student


def load_active_event(conn: sqlite3.Connection, event_id: str) -> Event:
    event = get_event(conn, event_id)
    if event is None:
        raise EventNotFound(event_id)
    if not event.is_active:
        raise EventInactive(event_id)
    return event


def ensure_event_running(event: Event, now: datetime) -> None:
    if event.start_date is not None and now < event.start_date:
        raise EventNotStarted(event.id, event.start_date.isoformat())
    if event.end_date is not None and now > event.end_date:
        raise EventEnded(event.id, event.end_date.isoformat())


def load_active_stall(conn: sqlite3.Connection, stall_id: str) -> Stall:
    stall = get_stall(conn, stall_id)
    if stall is None:
        raise StallNotFound(stall_id)
    if not stall.is_active:
        raise StallInactive(stall_id)
    return stall
