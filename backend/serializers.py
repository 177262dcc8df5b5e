from database.db import AttendanceCodes, PreRegisteredRecord, StudentRecord


def student_json(student: StudentRecord) -> dict:
    return {
        "id": student["id"],
        "name": student["name"],
        "email": student["email"],
        "seatNumber": student["seat_number"],
        "status": student["status"],
        "lastActive": student["last_active"],
        "attendanceVerified": student["attendance_verified"],
        "hasAccount": student["has_credentials"],
    }


def preregistered_json(record: PreRegisteredRecord) -> dict:
    return {
        "id": record["id"],
        "name": record["name"],
        "seatNumber": record["seat_number"],
    }


def codes_json(codes: AttendanceCodes) -> dict:
    return {
        "morningCode": codes["morning_code"],
        "afternoonCode": codes["afternoon_code"],
    }
