from fastapi import APIRouter, Depends

from backend.security import require_roles
from backend.services.nullification import end_event, sweep_ended_events
from backend.services.qrcodes import stall_qrcode

router = APIRouter(dependencies=[Depends(require_roles("admin"))])


@router.post("/admin/events/{event_id}/end")
def stop_event(event_id: str):
    stats = end_event(event_id)
    return {
        "ok": True,
        "message": "Event ended.",
        **stats,
    }


@router.post("/admin/attendance/maintenance")
def run_attendance_maintenance():
    stats = sweep_ended_events()
    return {
        "ok": True,
        "message": "Attendance maintenance completed.",
        **stats,
    }


@router.get("/admin/stalls/{stall_id}/qrcode")
def get_stall_qrcode(stall_id: str):
    return stall_qrcode(stall_id)
