from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from backend.security import require_roles
from backend.services.engagement import (
    cast_vote,
    get_my_feedbacks,
    get_my_votes,
    get_student_status,
    get_voting_eligibility,
    submit_feedback,
)
from backend.services.nullification import get_attendance_summary
from backend.services.qrcodes import student_qrcode
from database.models import Actor

router = APIRouter()

require_student = require_roles("student")


class FeedbackCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    stall_id: str = Field(alias="stallId")
    event_id: str = Field(alias="eventId")
    rating: int
    comments: str | None = None


class VoteCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    stall_id: str = Field(alias="stallId")
    event_id: str = Field(alias="eventId")
    rank: int | None = None


@router.get("/student/qrcode/{event_id}")
def get_student_qrcode(event_id: str, actor: Actor = Depends(require_student)):
    return student_qrcode(actor.id, event_id)


@router.get("/student/attendance/{event_id}")
def get_student_attendance(event_id: str, actor: Actor = Depends(require_student)):
    return get_attendance_summary(actor.id, event_id)


@router.get("/student/voting-eligibility/{event_id}")
def voting_eligibility(event_id: str, actor: Actor = Depends(require_student)):
    return get_voting_eligibility(actor.id, event_id)


@router.post("/student/feedback")
def create_feedback(payload: FeedbackCreate, actor: Actor = Depends(require_student)):
    return submit_feedback(
        actor.id,
        payload.stall_id.strip(),
        payload.event_id.strip(),
        rating=payload.rating,
        comments=payload.comments,
    )


@router.post("/student/vote")
def create_vote(payload: VoteCreate, actor: Actor = Depends(require_student)):
    return cast_vote(
        actor.id,
        payload.stall_id.strip(),
        payload.event_id.strip(),
        rank=payload.rank,
    )


@router.get("/student/votes")
def list_my_votes(
    event_id: str | None = None,
    actor: Actor = Depends(require_student),
):
    return get_my_votes(actor.id, event_id)


@router.get("/student/feedbacks")
def list_my_feedbacks(
    event_id: str | None = None,
    actor: Actor = Depends(require_student),
):
    return get_my_feedbacks(actor.id, event_id)


@router.get("/student/status/{event_id}")
def student_status(event_id: str, actor: Actor = Depends(require_student)):
    return get_student_status(actor.id, event_id)
