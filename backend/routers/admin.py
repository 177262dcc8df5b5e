import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from backend.errors import ApiError
from backend.security import require_admin
from backend.serializers import codes_json, preregistered_json, student_json
from database.db import (
    DirectoryError,
    StudentStatus,
    add_preregistered,
    bulk_replace_preregistered,
    delete_preregistered,
    get_attendance_codes,
    list_preregistered,
    list_students,
    reset_all_students,
    reset_student,
    set_attendance_codes,
    update_student_status,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])


class AttendanceCodesUpdate(BaseModel):
    morning_code: str | None = Field(default=None, alias="morningCode")
    afternoon_code: str | None = Field(default=None, alias="afternoonCode")


class PreRegistration(BaseModel):
    name: str
    seat_number: int = Field(alias="seatNumber")


class BulkPreRegistration(BaseModel):
    students: list[PreRegistration]


class StatusUpdate(BaseModel):
    student_id: str = Field(alias="studentId")
    status: StudentStatus


def _parse_seat_param(value: str | None) -> int:
    text = (value or "").strip()
    if not text:
        raise HTTPException(status_code=400, detail="Seat number is required")
    if not text.isdigit() or int(text) < 1:
        raise HTTPException(status_code=400, detail="Seat number must be a positive integer")
    return int(text)


# -----------------------------
# Attendance codes
# -----------------------------
@router.get("/attendance-codes")
def read_attendance_codes():
    return codes_json(get_attendance_codes())


@router.put("/attendance-codes")
def write_attendance_codes(payload: AttendanceCodesUpdate):
    try:
        codes = set_attendance_codes(payload.morning_code, payload.afternoon_code)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    logger.info("Attendance codes updated")
    return codes_json(codes)


# -----------------------------
# Pre-registration
# -----------------------------
@router.get("/preregister")
def read_preregistered():
    return [preregistered_json(r) for r in list_preregistered()]


@router.post("/preregister")
def create_preregistered(payload: PreRegistration):
    name = payload.name.strip()
    if not name or payload.seat_number < 1:
        raise HTTPException(status_code=400, detail="Name and seat number are required")

    try:
        record = add_preregistered(name, payload.seat_number)
    except DirectoryError as exc:
        raise ApiError(400, exc.message, exc.code)
    return preregistered_json(record)


@router.put("/preregister")
def replace_preregistered(payload: BulkPreRegistration):
    records = bulk_replace_preregistered(
        (entry.name, entry.seat_number) for entry in payload.students
    )
    logger.info("Pre-registration replaced: %d requested, %d stored", len(payload.students), len(records))
    return [preregistered_json(r) for r in records]


@router.delete("/preregister")
def remove_preregistered(seat_number: str | None = Query(default=None, alias="seatNumber")):
    seat = _parse_seat_param(seat_number)
    if not delete_preregistered(seat):
        raise HTTPException(status_code=404, detail="Pre-registration not found")
    return {"success": True}


# -----------------------------
# Students
# -----------------------------
@router.get("/students")
def read_students():
    return [student_json(s) for s in list_students()]


@router.put("/students")
def override_student_status(payload: StatusUpdate):
    student = update_student_status(payload.student_id, payload.status)
    if not student:
        raise HTTPException(status_code=404, detail="Student not found")
    return student_json(student)


@router.delete("/students")
def remove_students(
    student_id: str | None = Query(default=None, alias="id"),
    all_students: bool = Query(default=False, alias="all"),
):
    if all_students:
        deleted = reset_all_students()
        logger.info("Reset all students (%d removed)", deleted)
        return {"success": True, "deleted": deleted}

    clean_id = (student_id or "").strip()
    if not clean_id:
        raise HTTPException(status_code=400, detail="Student id or all=true is required")

    # Unknown ids are an explicit no-op.
    deleted = reset_student(clean_id)
    return {"success": True, "deleted": 1 if deleted else 0}
