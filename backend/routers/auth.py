import logging
import sqlite3
import time

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from backend.clock import Clock, get_clock
from backend.security import (
    Session,
    describe_session,
    issue_admin_token,
    issue_student_token,
    require_session,
)
from backend.services.attendance import code_login
from database.db import create_tables, verify_admin_credentials

logger = logging.getLogger(__name__)

router = APIRouter()

INVALID_CREDENTIALS = "Invalid credentials."


class AdminLogin(BaseModel):
    username: str = ""
    password: str = ""


class StudentLogin(BaseModel):
    seat_number: str | int = Field(default="", alias="seatNumber")
    attendance_code: str = Field(default="", alias="attendanceCode")


def _token_response(token: str, expires_at: int, extra: dict) -> dict:
    now = int(time.time())
    return {
        "access_token": token,
        "token_type": "bearer",
        "expires_at": expires_at,
        "expires_in": max(0, expires_at - now),
        **extra,
    }


def _parse_seat(value: str | int) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 1 else None
    text = value.strip()
    if not text.isdigit():
        return None
    seat = int(text)
    return seat if seat >= 1 else None


@router.post("/auth/login")
def admin_login(payload: AdminLogin):
    username = payload.username.strip()
    password = payload.password.strip()

    if not username or not password:
        raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)

    try:
        admin = verify_admin_credentials(username, password)
    except sqlite3.OperationalError:
        # Self-heal when DB schema is missing (e.g., startup/lifespan skipped).
        try:
            create_tables()
            admin = verify_admin_credentials(username, password)
        except sqlite3.OperationalError:
            raise HTTPException(
                status_code=503,
                detail="Authentication service unavailable. Please retry.",
            )

    if not admin:
        logger.warning("Rejected admin login for %r", username)
        raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)

    token, session = issue_admin_token(admin["id"], admin["username"])
    return _token_response(
        token,
        session.expires_at,
        {"username": session.username, "role": "admin"},
    )


@router.post("/auth/student/login")
def student_login(payload: StudentLogin, clock: Clock = Depends(get_clock)):
    seat_number = _parse_seat(payload.seat_number)
    code = payload.attendance_code
    if seat_number is None or not code:
        raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)

    student = code_login(seat_number, code, now=clock())
    if not student:
        raise HTTPException(status_code=401, detail=INVALID_CREDENTIALS)

    token, session = issue_student_token(student["id"], student["seat_number"])
    return _token_response(
        token,
        session.expires_at,
        {"id": session.student_id, "seatNumber": session.seat_number, "role": "student"},
    )


@router.get("/auth/me")
def auth_me(session: Session = Depends(require_session)):
    return describe_session(session)
