"""
Engagement gate: who may vote for which stall, and feedback intake.

Voting is department-scoped and unlocks only after the student has reviewed
MIN_DEPARTMENT_FEEDBACKS distinct stalls of their own department. The write
path re-checks every condition inside the transaction that inserts the vote;
the read-only eligibility summary uses the same counting helpers so it never
advertises a vote the write path would reject.
"""

import logging
import sqlite3
from datetime import datetime
from typing import Any, TypedDict

from backend.config import MIN_DEPARTMENT_FEEDBACKS
from backend.errors import (
    AlreadyVoted,
    DepartmentMismatch,
    EngagementError,
    EventNotFound,
    InvalidRating,
    FeedbackAlreadySubmitted,
    FeedbackNotAllowed,
    FeedbackRequired,
    InsufficientFeedback,
    InvalidRank,
    NotCheckedIn,
    RankAlreadyUsed,
    StallNotFound,
    VoteLimitReached,
    VotingNotAllowed,
)
from backend.services.lookups import load_active_event, load_active_stall, load_student
from database.db import (
    count_student_feedbacks,
    feedback_exists,
    get_event,
    get_feedback_stall_departments,
    get_votes,
    insert_feedback,
    insert_vote,
    list_student_feedbacks,
    list_student_votes,
    read_only,
    transaction,
    vote_exists,
)
from database.models import Actor, Event, Stall
from database.sessions import find_open_session

logger = logging.getLogger(__name__)


class VotingEligibility(TypedDict):
    event_id: str
    voting_unlocked: bool
    allow_voting: bool
    is_checked_in: bool
    feedbacks_in_own_dept: int
    required_feedbacks: int
    vote_count: int
    max_votes: int
    votes_remaining: int
    eligible_stall_ids: list[str]
    voted_stall_ids: list[str]


def same_department(left: str | None, right: str | None) -> bool:
    if not left or not right:
        return False
    return left.strip().casefold() == right.strip().casefold()


def department_feedback_stall_ids(
    conn: sqlite3.Connection,
    student: Actor,
    event_id: str,
    *,
    active_only: bool = False,
) -> list[str]:
    """
    Distinct stalls in the student's own department that the student reviewed
    for this event. Deactivated stalls still count toward the threshold; pass
    ``active_only`` to list only stalls that can still take a vote.
    """
    return [
        stall_id
        for stall_id, department, is_active in get_feedback_stall_departments(
            conn, student_id=student.id, event_id=event_id
        )
        if same_department(student.department, department) and (is_active or not active_only)
    ]


def is_checked_in(conn: sqlite3.Connection, student_id: str, event_id: str) -> bool:
    return find_open_session(conn, student_id=student_id, event_id=event_id) is not None


def check_feedback(conn: sqlite3.Connection, *, student: Actor, stall: Stall, event: Event) -> None:
    """Raise the first reason this student cannot leave feedback on this stall."""
    if not event.allow_feedback:
        raise FeedbackNotAllowed(event.id)
    if not is_checked_in(conn, student.id, event.id):
        raise NotCheckedIn(event.id)
    if feedback_exists(conn, student_id=student.id, stall_id=stall.id, event_id=event.id):
        raise FeedbackAlreadySubmitted(stall.id)


def feedback_blocked_reason(
    conn: sqlite3.Connection,
    *,
    student: Actor,
    stall: Stall,
    event: Event,
) -> str | None:
    try:
        check_feedback(conn, student=student, stall=stall, event=event)
    except EngagementError as exc:
        return exc.kind
    return None


def check_vote(
    conn: sqlite3.Connection,
    *,
    student: Actor,
    stall: Stall,
    event: Event,
    rank: int | None = None,
) -> int:
    """
    Raise the first failing eligibility condition; return the rank to record.

    Order: voting enabled, checked in, same department, feedback for this
    stall, department feedback threshold, not already voted, vote cap, rank.
    """
    if not event.allow_voting:
        raise VotingNotAllowed(event.id)
    if not is_checked_in(conn, student.id, event.id):
        raise NotCheckedIn(event.id)
    if not same_department(student.department, stall.department):
        raise DepartmentMismatch(student.department, stall.department)
    if not feedback_exists(conn, student_id=student.id, stall_id=stall.id, event_id=event.id):
        raise FeedbackRequired(stall.id)

    reviewed = department_feedback_stall_ids(conn, student, event.id)
    if len(reviewed) < MIN_DEPARTMENT_FEEDBACKS:
        raise InsufficientFeedback(len(reviewed), MIN_DEPARTMENT_FEEDBACKS)

    if vote_exists(conn, student_id=student.id, stall_id=stall.id, event_id=event.id):
        raise AlreadyVoted(stall.id)

    max_votes = event.max_votes_per_student
    votes = get_votes(conn, student_id=student.id, event_id=event.id)
    if len(votes) >= max_votes:
        raise VoteLimitReached(max_votes)

    used_ranks = {vote_rank for _, vote_rank in votes}
    if rank is None:
        return min(r for r in range(1, max_votes + 1) if r not in used_ranks)
    if rank < 1 or rank > max_votes:
        raise InvalidRank(rank, max_votes)
    if rank in used_ranks:
        raise RankAlreadyUsed(rank)
    return rank


def vote_blocked_reason(
    conn: sqlite3.Connection,
    *,
    student: Actor,
    stall: Stall,
    event: Event,
) -> str | None:
    """Kind of the first failing condition, or None when a vote would be accepted."""
    try:
        check_vote(conn, student=student, stall=stall, event=event)
    except EngagementError as exc:
        return exc.kind
    return None


def cast_vote(
    student_id: str,
    stall_id: str,
    event_id: str,
    *,
    rank: int | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    marker = now or datetime.now()

    try:
        with transaction() as conn:
            student = load_student(conn, student_id)
            event = load_active_event(conn, event_id)
            stall = load_active_stall(conn, stall_id)
            if stall.event_id != event.id:
                raise StallNotFound(stall.id, message="This stall does not belong to the event.")

            chosen_rank = check_vote(conn, student=student, stall=stall, event=event, rank=rank)
            try:
                vote_id = insert_vote(
                    conn,
                    student_id=student.id,
                    stall_id=stall.id,
                    event_id=event.id,
                    rank=chosen_rank,
                    created_at=marker,
                )
            except sqlite3.IntegrityError as exc:
                if "rank" in str(exc):
                    raise RankAlreadyUsed(chosen_rank)
                raise AlreadyVoted(stall.id)

            votes_cast = len(get_votes(conn, student_id=student.id, event_id=event.id))
    except EngagementError as exc:
        logger.warning("Vote rejected student=%s stall=%s event=%s: %s", student_id, stall_id, event_id, exc)
        raise

    logger.info("Vote cast student=%s stall=%s event=%s rank=%s", student_id, stall_id, event_id, chosen_rank)
    return {
        "id": vote_id,
        "student_id": student.id,
        "stall": stall.to_dict(),
        "event_id": event.id,
        "rank": chosen_rank,
        "created_at": marker.isoformat(),
        "votes_remaining": max(0, event.max_votes_per_student - votes_cast),
    }


def submit_feedback(
    student_id: str,
    stall_id: str,
    event_id: str,
    *,
    rating: int,
    comments: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    marker = now or datetime.now()

    try:
        if not isinstance(rating, int) or isinstance(rating, bool) or not 1 <= rating <= 5:
            raise InvalidRating(rating)

        with transaction() as conn:
            student = load_student(conn, student_id)
            stall = load_active_stall(conn, stall_id)
            event = load_active_event(conn, event_id)
            if stall.event_id != event.id:
                raise StallNotFound(stall.id, message="This stall does not belong to the event.")
            check_feedback(conn, student=student, stall=stall, event=event)

            clean_comments = comments.strip() if comments else None
            try:
                feedback_id = insert_feedback(
                    conn,
                    student_id=student.id,
                    stall_id=stall.id,
                    event_id=event.id,
                    rating=rating,
                    comments=clean_comments or None,
                    created_at=marker,
                )
            except sqlite3.IntegrityError:
                raise FeedbackAlreadySubmitted(stall.id)

            in_department = len(department_feedback_stall_ids(conn, student, event.id))
    except EngagementError as exc:
        logger.warning("Feedback rejected student=%s stall=%s event=%s: %s", student_id, stall_id, event_id, exc)
        raise

    logger.info("Feedback recorded student=%s stall=%s event=%s", student_id, stall_id, event_id)
    return {
        "id": feedback_id,
        "student_id": student.id,
        "stall": stall.to_dict(),
        "event_id": event.id,
        "rating": rating,
        "comments": clean_comments or None,
        "created_at": marker.isoformat(),
        "feedbacks_in_own_dept": in_department,
        "required_feedbacks": MIN_DEPARTMENT_FEEDBACKS,
    }


def get_voting_eligibility(student_id: str, event_id: str) -> VotingEligibility:
    with read_only() as conn:
        student = load_student(conn, student_id)
        event = get_event(conn, event_id)
        if event is None:
            raise EventNotFound(event_id)

        reviewed = department_feedback_stall_ids(conn, student, event.id)
        votable = department_feedback_stall_ids(conn, student, event.id, active_only=True)
        votes = get_votes(conn, student_id=student.id, event_id=event.id)
        checked_in = is_checked_in(conn, student.id, event.id)

    voted = [stall_id for stall_id, _ in votes]
    votes_remaining = max(0, event.max_votes_per_student - len(votes))
    unlocked = len(reviewed) >= MIN_DEPARTMENT_FEEDBACKS and votes_remaining > 0
    return {
        "event_id": event.id,
        "voting_unlocked": unlocked,
        "allow_voting": event.allow_voting,
        "is_checked_in": checked_in,
        "feedbacks_in_own_dept": len(reviewed),
        "required_feedbacks": MIN_DEPARTMENT_FEEDBACKS,
        "vote_count": len(votes),
        "max_votes": event.max_votes_per_student,
        "votes_remaining": votes_remaining,
        "eligible_stall_ids": [stall_id for stall_id in votable if stall_id not in voted] if unlocked else [],
        "voted_stall_ids": voted,
    }


def get_student_status(student_id: str, event_id: str) -> dict[str, Any]:
    """Check-in state, ranked votes and feedback count for one event."""
    with read_only() as conn:
        student = load_student(conn, student_id)
        event = get_event(conn, event_id)
        if event is None:
            raise EventNotFound(event_id)
        checked_in = is_checked_in(conn, student.id, event.id)
        feedbacks_given = count_student_feedbacks(conn, student_id=student.id, event_id=event.id)

    votes = list_student_votes(student_id=student.id, event_id=event.id)
    return {
        "event_id": event.id,
        "is_checked_in": checked_in,
        "votes_count": len(votes),
        "votes": [{"rank": vote["rank"], "stall": vote["stall"]} for vote in votes],
        "feedbacks_given": feedbacks_given,
    }


def get_my_votes(student_id: str, event_id: str | None = None) -> dict[str, Any]:
    with read_only() as conn:
        load_student(conn, student_id)
    rows = list_student_votes(student_id=student_id, event_id=event_id)
    return {"count": len(rows), "rows": rows}


def get_my_feedbacks(student_id: str, event_id: str | None = None) -> dict[str, Any]:
    with read_only() as conn:
        load_student(conn, student_id)
    rows = list_student_feedbacks(student_id=student_id, event_id=event_id)
    return {"count": len(rows), "rows": rows}
