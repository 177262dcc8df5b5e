import logging
from datetime import datetime
from typing import Literal

from backend.clock import SessionWindow, local_date, parse_iso, resolve_session_window
from database.db import (
    ATTENDANCE_CODE_PATTERN,
    AttendanceCodes,
    StudentRecord,
    get_attendance_codes,
    get_student,
    mark_attendance_verified,
    record_code_login,
)

logger = logging.getLogger(__name__)

CheckOutcome = Literal[
    "ACCEPTED",
    "INVALID_FORMAT",
    "NO_CODES",
    "WINDOW_CLOSED",
    "WRONG_CODE",
    "STUDENT_NOT_FOUND",
]

OUTCOME_MESSAGES: dict[str, str] = {
    "ACCEPTED": "Attendance verified.",
    "INVALID_FORMAT": "Invalid code format",
    "NO_CODES": "No attendance codes set",
    "WINDOW_CLOSED": "Attendance is closed for today (after 21:00).",
    "WRONG_CODE": "Invalid attendance code",
    "STUDENT_NOT_FOUND": "Student not found",
}


def match_attendance_code(codes: AttendanceCodes, window: SessionWindow, code: str) -> CheckOutcome:
    """
    Compare a submitted code with the code of the current session window.

    Only the active session's code is accepted; nothing is accepted once the
    afternoon window has closed. A closed window is reported before missing
    codes.
    """
    if not isinstance(code, str) or not ATTENDANCE_CODE_PATTERN.fullmatch(code):
        return "INVALID_FORMAT"
    if not window.is_valid:
        return "WINDOW_CLOSED"
    if codes["morning_code"] is None and codes["afternoon_code"] is None:
        return "NO_CODES"

    expected = codes["morning_code"] if window.session == "morning" else codes["afternoon_code"]
    if expected is None or code != expected:
        return "WRONG_CODE"
    return "ACCEPTED"


def code_login(seat_number: int, code: str, *, now: datetime) -> StudentRecord | None:
    """Seat + code login. Every failure collapses to None."""
    if seat_number < 1:
        return None

    outcome = match_attendance_code(get_attendance_codes(), resolve_session_window(now), code)
    if outcome != "ACCEPTED":
        logger.info("Code login rejected for seat %s: %s", seat_number, outcome)
        return None

    student = record_code_login(seat_number, now=now)
    if student:
        logger.info("Seat %s checked in via code login", seat_number)
    return student


def verify_attendance(student_id: str, code: str, *, now: datetime) -> CheckOutcome:
    outcome = match_attendance_code(get_attendance_codes(), resolve_session_window(now), code)
    if outcome != "ACCEPTED":
        return outcome

    if not mark_attendance_verified(student_id, now=now):
        return "STUDENT_NOT_FOUND"
    return outcome


def attendance_status(student_id: str, *, now: datetime) -> dict | None:
    student = get_student(student_id)
    if not student:
        return None

    verified_at = parse_iso(student["attendance_verified"])
    verified_date = local_date(verified_at) if verified_at else None
    window = resolve_session_window(now)
    return {
        "isVerifiedToday": verified_date == local_date(now),
        "currentSession": window.session,
        "isSessionValid": window.is_valid,
        "verifiedDate": verified_date,
    }
