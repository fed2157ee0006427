"""
Error taxonomy for the scan and engagement core.

Every rejected scan, feedback or vote raises an ``EngagementError`` carrying a
machine-readable ``kind`` (what the UI switches on), a human-readable message
and the HTTP status the API layer answers with. Anything that is not an
``EngagementError`` is an infrastructure failure and propagates as a 500.
"""

from typing import Any


class EngagementError(Exception):
    """Base class for recoverable, user-facing rejections."""

    status_code = 400

    def __init__(self, kind: str, message: str, status_code: int | None = None, **details: Any):
        super().__init__(message)
        self.kind = kind
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def __str__(self) -> str:
        return f"[{self.kind}] {self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "kind": self.kind, **self.details}


class TokenError(EngagementError):
    """Missing, malformed, expired or wrongly typed QR token."""

    status_code = 400


class MissingToken(TokenError):
    def __init__(self):
        super().__init__("MissingToken", "QR token is required.")


class TokenMalformed(TokenError):
    def __init__(self, reason: str = "Invalid QR code."):
        super().__init__("TokenMalformed", reason)


class TokenExpired(TokenError):
    def __init__(self):
        super().__init__("TokenExpired", "QR code has expired. Please generate a new one.")


class TokenTypeMismatch(TokenError):
    def __init__(self, expected: str, actual: Any):
        super().__init__(
            "TokenTypeMismatch",
            f'Invalid QR code type "{actual}". Expected a "{expected}" QR code.',
            expected=expected,
            actual=actual,
        )


class NotFoundError(EngagementError):
    status_code = 404


class SubjectNotFound(NotFoundError):
    def __init__(self, subject_id: str):
        super().__init__("SubjectNotFound", "Student not found in the system.", subject_id=subject_id)


class EventNotFound(NotFoundError):
    def __init__(self, event_id: str):
        super().__init__("EventNotFound", "Event not found.", event_id=event_id)


class StallNotFound(NotFoundError):
    def __init__(self, stall_id: str, message: str = "Stall not found."):
        super().__init__("StallNotFound", message, stall_id=stall_id)


class ForbiddenError(EngagementError):
    status_code = 403


class SubjectInactive(ForbiddenError):
    def __init__(self, subject_id: str):
        super().__init__("SubjectInactive", "Student account is inactive.", subject_id=subject_id)


class RoleMismatch(ForbiddenError):
    def __init__(self, expected: str, actual: str | None):
        super().__init__(
            "RoleMismatch",
            f"This QR code belongs to a {actual or 'unknown role'}, not a {expected}.",
            expected=expected,
            actual=actual,
        )


class ActorNotAllowed(ForbiddenError):
    def __init__(self, role: str | None):
        super().__init__("ActorNotAllowed", "You are not allowed to perform this action.", role=role)


class EventInactive(ForbiddenError):
    def __init__(self, event_id: str):
        super().__init__("EventInactive", "This event is not active.", event_id=event_id)


class EventNotStarted(ForbiddenError):
    def __init__(self, event_id: str, start_date: str):
        super().__init__(
            "EventNotStarted",
            "This event has not started yet.",
            event_id=event_id,
            start_date=start_date,
        )


class EventEnded(ForbiddenError):
    def __init__(self, event_id: str, end_date: str):
        super().__init__(
            "EventEnded",
            "This event has already ended.",
            event_id=event_id,
            end_date=end_date,
        )


class StallInactive(ForbiddenError):
    def __init__(self, stall_id: str):
        super().__init__("StallInactive", "This stall is not active.", stall_id=stall_id)


class NotCheckedIn(ForbiddenError):
    def __init__(self, event_id: str):
        super().__init__(
            "NotCheckedIn",
            "You must be checked in to the event to interact with stalls.",
            event_id=event_id,
        )


class TooSoonToCheckIn(EngagementError):
    def __init__(self, retry_after_seconds: int):
        super().__init__(
            "TooSoonToCheckIn",
            "Student just checked out. Please wait a minute before checking in again.",
            retry_after_seconds=retry_after_seconds,
        )


class TooSoonToCheckOut(EngagementError):
    def __init__(self, elapsed_seconds: int, min_seconds: int, retry_after_seconds: int):
        super().__init__(
            "TooSoonToCheckOut",
            f"Student checked in {elapsed_seconds} seconds ago. "
            f"Please wait at least {min_seconds} seconds before checking out.",
            elapsed_seconds=elapsed_seconds,
            retry_after_seconds=retry_after_seconds,
        )


class VotingNotAllowed(ForbiddenError):
    def __init__(self, event_id: str):
        super().__init__("VotingNotAllowed", "Voting is not allowed for this event.", event_id=event_id)


class FeedbackNotAllowed(ForbiddenError):
    def __init__(self, event_id: str):
        super().__init__("FeedbackNotAllowed", "Feedback is not allowed for this event.", event_id=event_id)


class DepartmentMismatch(ForbiddenError):
    def __init__(self, student_department: str | None, stall_department: str | None):
        super().__init__(
            "DepartmentMismatch",
            "You can only vote for stalls in your own department.",
            student_department=student_department,
            stall_department=stall_department,
        )


class FeedbackRequired(ForbiddenError):
    def __init__(self, stall_id: str):
        super().__init__(
            "FeedbackRequired",
            "Submit feedback for this stall before voting for it.",
            stall_id=stall_id,
        )


class InsufficientFeedback(ForbiddenError):
    def __init__(self, current: int, required: int):
        super().__init__(
            "InsufficientFeedback",
            f"Give feedback to at least {required} stalls in your department to unlock voting "
            f"({current}/{required}).",
            current=current,
            required=required,
        )


class VoteLimitReached(ForbiddenError):
    def __init__(self, max_votes: int):
        super().__init__(
            "VoteLimitReached",
            f"You have reached the maximum number of votes ({max_votes}).",
            max=max_votes,
        )


class InvalidRank(EngagementError):
    def __init__(self, rank: int, max_rank: int):
        super().__init__(
            "InvalidRank",
            f"Rank must be between 1 and {max_rank}.",
            rank=rank,
            max=max_rank,
        )


class InvalidRating(EngagementError):
    def __init__(self, rating: Any):
        super().__init__("InvalidRating", "Rating must be between 1 and 5.", rating=rating)


class ConflictError(EngagementError):
    status_code = 409


class AlreadyVoted(ConflictError):
    def __init__(self, stall_id: str):
        super().__init__("AlreadyVoted", "You have already voted for this stall.", stall_id=stall_id)


class RankAlreadyUsed(ConflictError):
    def __init__(self, rank: int):
        super().__init__("RankAlreadyUsed", f"You have already cast your rank {rank} vote.", rank=rank)


class FeedbackAlreadySubmitted(ConflictError):
    def __init__(self, stall_id: str):
        super().__init__(
            "FeedbackAlreadySubmitted",
            "You have already submitted feedback for this stall.",
            stall_id=stall_id,
        )
