from fastapi import APIRouter, Depends, HTTPException

from backend.config import (
    CHECKIN_COOLDOWN_SECONDS,
    CHECKOUT_MIN_SECONDS,
    DB_PATH,
    DEFAULT_MAX_VOTES_PER_STUDENT,
    ENABLE_DEBUG_ENDPOINTS,
    MIN_DEPARTMENT_FEEDBACKS,
    STALL_TOKEN_TTL_SECONDS,
    STUDENT_TOKEN_TTL_SECONDS,
)
from backend.security import require_session

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/debug/dbpath")
def dbpath(_session: dict = Depends(require_session)):
    if not ENABLE_DEBUG_ENDPOINTS:
        raise HTTPException(status_code=404, detail="Not found.")
    return {"db_path": str(DB_PATH)}


@router.get("/config/engagement")
def engagement_config():
    return {
        "checkout_min_seconds": CHECKOUT_MIN_SECONDS,
        "checkin_cooldown_seconds": CHECKIN_COOLDOWN_SECONDS,
        "student_token_ttl_seconds": STUDENT_TOKEN_TTL_SECONDS,
        "stall_token_ttl_seconds": STALL_TOKEN_TTL_SECONDS,
        "min_department_feedbacks": MIN_DEPARTMENT_FEEDBACKS,
        "default_max_votes_per_student": DEFAULT_MAX_VOTES_PER_STUDENT,
    }
