from fastapi import APIRouter, Depends, HTTPException

from backend.clock import Clock, get_clock, resolve_session_window
from backend.config import (
    AFTERNOON_END_HOUR,
    AUTH_TOKEN_TTL_SECONDS,
    DB_PATH,
    ENABLE_DEBUG_ENDPOINTS,
    MORNING_END_HOUR,
    UTC_OFFSET_HOURS,
)
from backend.security import require_admin

router = APIRouter()


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/debug/dbpath", dependencies=[Depends(require_admin)])
def dbpath():
    if not ENABLE_DEBUG_ENDPOINTS:
        raise HTTPException(status_code=404, detail="Not found.")
    return {"db_path": str(DB_PATH)}


@router.get("/config/attendance")
def attendance_config(clock: Clock = Depends(get_clock)):
    window = resolve_session_window(clock())
    return {
        "utc_offset_hours": UTC_OFFSET_HOURS,
        "morning_end_hour": MORNING_END_HOUR,
        "afternoon_end_hour": AFTERNOON_END_HOUR,
        "session_ttl_seconds": AUTH_TOKEN_TTL_SECONDS,
        "current_session": window.session,
        "is_session_valid": window.is_valid,
        "local_time": window.local_time.strftime("%H:%M:%S"),
    }
