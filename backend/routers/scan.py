from typing import cast

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from backend.security import require_roles
from backend.services.gate import scan_student
from backend.services.stall_scan import scan_stall
from database.db import ScanAction, ScanStatus, get_scan_logs, get_scan_logs_total
from database.models import Actor

router = APIRouter()

ALLOWED_ACTIONS: set[str] = {"gate-check-in", "gate-check-out", "stall-scan"}
ALLOWED_STATUSES: set[str] = {"success", "failed"}


class ScanRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    qr_token: str | None = Field(default=None, alias="qrToken")


@router.post("/scan/student")
def scan_student_qr(payload: ScanRequest, actor: Actor = Depends(require_roles("volunteer", "admin"))):
    return scan_student(actor, payload.qr_token)


@router.post("/scan/stall")
def scan_stall_qr(payload: ScanRequest, actor: Actor = Depends(require_roles("student"))):
    return scan_stall(actor, payload.qr_token)


@router.get("/scan/logs")
def list_scan_logs(
    event_id: str | None = None,
    actor_id: str | None = None,
    subject_id: str | None = None,
    action: str | None = None,
    status: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    _actor: Actor = Depends(require_roles("volunteer", "admin")),
):
    clean_action = action.strip() if action else None
    if clean_action and clean_action not in ALLOWED_ACTIONS:
        raise HTTPException(status_code=400, detail="Invalid action filter.")
    clean_status = status.strip() if status else None
    if clean_status and clean_status not in ALLOWED_STATUSES:
        raise HTTPException(status_code=400, detail="Invalid status filter.")

    typed_action = cast(ScanAction | None, clean_action)
    typed_status = cast(ScanStatus | None, clean_status)
    rows = get_scan_logs(
        event_id=event_id,
        actor_id=actor_id,
        subject_id=subject_id,
        action=typed_action,
        status=typed_status,
        limit=limit,
        offset=offset,
    )
    total = get_scan_logs_total(
        event_id=event_id,
        actor_id=actor_id,
        subject_id=subject_id,
        action=typed_action,
        status=typed_status,
    )
    return {
        "rows": rows,
        "total": total,
        "limit": limit,
        "offset": offset,
    }
