import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, EmailStr, Field

from backend.clock import Clock, get_clock
from backend.errors import ApiError
from backend.security import StudentSession, require_student
from backend.serializers import student_json
from backend.services.attendance import OUTCOME_MESSAGES, attendance_status, verify_attendance
from database.db import (
    DirectoryError,
    StudentStatus,
    check_seat,
    get_student,
    signup_student,
    update_student_status,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/student")


class StudentSignup(BaseModel):
    email: EmailStr
    seat_number: int = Field(alias="seatNumber", ge=1)
    password: str = Field(min_length=1)


class AttendanceCheck(BaseModel):
    code: str = ""


class SelfStatusUpdate(BaseModel):
    status: StudentStatus


@router.get("/check-seat")
def check_seat_availability(seat_number: str | None = Query(default=None, alias="seatNumber")):
    text = (seat_number or "").strip()
    if not text:
        raise HTTPException(status_code=400, detail="Seat number is required")
    if not text.isdigit() or int(text) < 1:
        raise HTTPException(status_code=400, detail="Seat number must be a positive integer")
    return check_seat(int(text))


@router.post("/signup", status_code=201)
def signup(payload: StudentSignup):
    try:
        student = signup_student(str(payload.email), payload.seat_number, payload.password)
    except DirectoryError as exc:
        logger.info("Signup rejected for seat %s: %s", payload.seat_number, exc.code)
        raise ApiError(400, exc.message, exc.code)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    logger.info("Student registered for seat %s", student["seat_number"])
    return {
        "message": "Student registered successfully",
        "student": {
            "id": student["id"],
            "email": student["email"],
            "seatNumber": student["seat_number"],
            "name": student["name"],
        },
    }


@router.get("/me")
def me(session: StudentSession = Depends(require_student)):
    student = get_student(session.student_id)
    if not student:
        raise HTTPException(status_code=404, detail="Student not found")
    return student_json(student)


@router.get("/attendance")
def read_attendance(
    session: StudentSession = Depends(require_student),
    clock: Clock = Depends(get_clock),
):
    status = attendance_status(session.student_id, now=clock())
    if status is None:
        raise HTTPException(status_code=404, detail="Student not found")
    return status


@router.post("/attendance")
def check_attendance(
    payload: AttendanceCheck,
    session: StudentSession = Depends(require_student),
    clock: Clock = Depends(get_clock),
):
    outcome = verify_attendance(session.student_id, payload.code, now=clock())
    if outcome == "ACCEPTED":
        return {"success": True, "message": OUTCOME_MESSAGES[outcome]}
    if outcome == "STUDENT_NOT_FOUND":
        raise HTTPException(status_code=404, detail=OUTCOME_MESSAGES[outcome])
    raise ApiError(400, OUTCOME_MESSAGES[outcome], outcome)


@router.put("/status")
def report_status(
    payload: SelfStatusUpdate,
    session: StudentSession = Depends(require_student),
    clock: Clock = Depends(get_clock),
):
    student = update_student_status(session.student_id, payload.status, now=clock())
    if not student:
        raise HTTPException(status_code=404, detail="Student not found")
    return student_json(student)
