import sqlite3
from datetime import datetime, timezone

import pytest

import database.db as db
from backend.clock import resolve_session_window
from backend.services.attendance import code_login, match_attendance_code, verify_attendance

MORNING = datetime(2026, 3, 2, 1, 0, tzinfo=timezone.utc)     # 10:00 local
AFTERNOON = datetime(2026, 3, 2, 6, 0, tzinfo=timezone.utc)   # 15:00 local
LATE_NIGHT = datetime(2026, 3, 2, 13, 0, tzinfo=timezone.utc) # 22:00 local


def _seat_rows(seat_number: int) -> tuple[int, int]:
    conn = db.connect_db()
    cur = conn.cursor()
    cur.execute("SELECT COUNT(*) FROM students WHERE seat_number = ?", (seat_number,))
    students = cur.fetchone()[0]
    cur.execute("SELECT COUNT(*) FROM preregistered_students WHERE seat_number = ?", (seat_number,))
    reservations = cur.fetchone()[0]
    conn.close()
    return students, reservations


# -----------------------------
# Attendance codes
# -----------------------------
def test_codes_default_to_null(temp_db):
    assert db.get_attendance_codes() == {"morning_code": None, "afternoon_code": None}


def test_codes_round_trip_with_unset_afternoon(temp_db):
    db.set_attendance_codes("0420", None)
    assert db.get_attendance_codes() == {"morning_code": "0420", "afternoon_code": None}


def test_empty_code_clears_previous_value(temp_db):
    db.set_attendance_codes("1111", "2222")
    db.set_attendance_codes("", "3333")
    assert db.get_attendance_codes() == {"morning_code": None, "afternoon_code": "3333"}


@pytest.mark.parametrize("bad", ["123", "12345", "12a4", " 123", "1234\n", "١٢٣٤"])
def test_malformed_codes_are_rejected(temp_db, bad):
    with pytest.raises(ValueError):
        db.set_attendance_codes(bad, None)
    assert db.get_attendance_codes()["morning_code"] is None


# -----------------------------
# Code matching
# -----------------------------
def test_match_uses_only_the_active_session_code():
    codes = {"morning_code": "1234", "afternoon_code": "5678"}
    assert match_attendance_code(codes, resolve_session_window(MORNING), "1234") == "ACCEPTED"
    assert match_attendance_code(codes, resolve_session_window(MORNING), "5678") == "WRONG_CODE"
    assert match_attendance_code(codes, resolve_session_window(AFTERNOON), "5678") == "ACCEPTED"
    assert match_attendance_code(codes, resolve_session_window(LATE_NIGHT), "5678") == "WINDOW_CLOSED"
    assert match_attendance_code(codes, resolve_session_window(MORNING), "12") == "INVALID_FORMAT"


def test_match_without_codes():
    codes = {"morning_code": None, "afternoon_code": None}
    assert match_attendance_code(codes, resolve_session_window(MORNING), "1234") == "NO_CODES"


def test_closed_window_reported_before_missing_codes():
    codes = {"morning_code": None, "afternoon_code": None}
    assert match_attendance_code(codes, resolve_session_window(LATE_NIGHT), "1234") == "WINDOW_CLOSED"
    assert match_attendance_code(codes, resolve_session_window(AFTERNOON), "1234") == "NO_CODES"
    # format is still checked first
    assert match_attendance_code(codes, resolve_session_window(LATE_NIGHT), "12") == "INVALID_FORMAT"


# -----------------------------
# Code login
# -----------------------------
def test_code_login_creates_online_student(temp_db):
    db.set_attendance_codes("1234", None)

    student = code_login(5, "1234", now=MORNING)

    assert student is not None
    assert student["seat_number"] == 5
    assert student["status"] == "online"
    assert student["attendance_verified"] == "2026-03-02T01:00:00+00:00"
    assert student["last_active"] == student["attendance_verified"]
    assert student["has_credentials"] is False


def test_code_login_wrong_code_fails(temp_db):
    db.set_attendance_codes("1234", None)
    assert code_login(5, "9999", now=MORNING) is None
    assert db.get_student_by_seat(5) is None


def test_code_login_after_nine_pm_fails_even_with_right_code(temp_db):
    db.set_attendance_codes("1234", "5678")
    assert code_login(5, "5678", now=LATE_NIGHT) is None
    assert code_login(5, "1234", now=LATE_NIGHT) is None


def test_code_login_updates_existing_student(temp_db):
    db.set_attendance_codes("1234", "5678")
    first = code_login(5, "1234", now=MORNING)
    db.update_student_status(first["id"], "absent")

    second = code_login(5, "5678", now=AFTERNOON)

    assert second["id"] == first["id"]
    assert second["status"] == "online"
    assert second["attendance_verified"] == "2026-03-02T06:00:00+00:00"


def test_code_login_consumes_preregistration(temp_db):
    db.set_attendance_codes("1234", None)
    db.add_preregistered("Kim Minji", 7)

    student = code_login(7, "1234", now=MORNING)

    assert student["name"] == "Kim Minji"
    assert _seat_rows(7) == (1, 0)


def test_code_login_rejects_non_positive_seat(temp_db):
    db.set_attendance_codes("1234", None)
    assert code_login(0, "1234", now=MORNING) is None


def test_verify_attendance_outcomes(temp_db):
    db.set_attendance_codes("1234", "5678")
    student = code_login(2, "1234", now=MORNING)

    assert verify_attendance(student["id"], "1234", now=AFTERNOON) == "WRONG_CODE"
    assert verify_attendance(student["id"], "5678", now=AFTERNOON) == "ACCEPTED"
    assert verify_attendance("missing", "5678", now=AFTERNOON) == "STUDENT_NOT_FOUND"
    assert db.get_student(student["id"])["attendance_verified"] == "2026-03-02T06:00:00+00:00"


# -----------------------------
# Signup
# -----------------------------
def test_signup_copies_reserved_name_and_deletes_reservation(temp_db):
    db.add_preregistered("Lee Jisoo", 3)

    student = db.signup_student("jisoo@example.com", 3, "pw")

    assert student["name"] == "Lee Jisoo"
    assert student["email"] == "jisoo@example.com"
    assert student["has_credentials"] is True
    assert _seat_rows(3) == (1, 0)
    assert db.check_seat(3) == {"available": False, "taken": True}


def test_signup_email_exists(temp_db):
    db.signup_student("a@example.com", 1, "pw")
    with pytest.raises(db.EmailExists):
        # seat 2 is free, email check still applies
        db.signup_student("A@example.com", 2, "pw")


def test_signup_seat_taken(temp_db):
    db.signup_student("a@example.com", 1, "pw")
    with pytest.raises(db.SeatTaken):
        db.signup_student("b@example.com", 1, "pw")


def test_signup_checks_email_before_seat(temp_db):
    db.signup_student("a@example.com", 1, "pw")
    with pytest.raises(db.EmailExists):
        db.signup_student("a@example.com", 1, "pw")


def test_signup_claims_bare_code_login_record(temp_db):
    db.set_attendance_codes("1234", None)
    bare = code_login(4, "1234", now=MORNING)

    claimed = db.signup_student("claim@example.com", 4, "pw")

    assert claimed["id"] == bare["id"]
    assert claimed["email"] == "claim@example.com"
    assert claimed["status"] == "online"
    assert len(db.list_students()) == 1


def test_signup_stores_hashed_password(temp_db):
    db.signup_student("hash@example.com", 8, "s3cret")
    conn = db.connect_db()
    stored = conn.execute(
        "SELECT password_hash FROM students WHERE seat_number = 8"
    ).fetchone()[0]
    conn.close()
    assert stored != "s3cret"
    assert db._verify_password("s3cret", stored)
    assert not db._verify_password("wrong", stored)


def test_signup_integrity_error_maps_to_seat_taken(temp_db, monkeypatch):
    real_fetch = db._fetch_student

    def racing_insert(cur, student_id):
        raise sqlite3.IntegrityError("UNIQUE constraint failed: students.seat_number")

    monkeypatch.setattr(db, "_fetch_student", racing_insert)
    with pytest.raises(db.SeatTaken):
        db.signup_student("race@example.com", 9, "pw")

    monkeypatch.setattr(db, "_fetch_student", real_fetch)
    # the failed transaction left nothing behind
    assert db.get_student_by_seat(9) is None


# -----------------------------
# Pre-registration
# -----------------------------
def test_add_preregistered_rejects_occupied_seat(temp_db):
    db.signup_student("a@example.com", 1, "pw")
    with pytest.raises(db.SeatOccupied):
        db.add_preregistered("Someone", 1)
    assert _seat_rows(1) == (1, 0)


def test_add_preregistered_renames_existing_reservation(temp_db):
    db.add_preregistered("Old Name", 6)
    record = db.add_preregistered("New Name", 6)
    assert record["name"] == "New Name"
    assert [r["name"] for r in db.list_preregistered()] == ["New Name"]


def test_bulk_replace_skips_duplicates_and_drops_prior_rows(temp_db):
    db.add_preregistered("Prior", 10)

    records = db.bulk_replace_preregistered([
        ("First", 3),
        ("Second", 3),
        ("Other", 1),
    ])

    assert [(r["seat_number"], r["name"]) for r in records] == [(1, "Other"), (3, "First")]
    assert db.check_seat(10) == {"available": True, "taken": False, "preRegistered": False}


def test_bulk_replace_skips_seats_owned_by_students(temp_db):
    db.signup_student("a@example.com", 2, "pw")
    records = db.bulk_replace_preregistered([("Clash", 2), ("Free", 4)])
    assert [r["seat_number"] for r in records] == [4]
    assert _seat_rows(2) == (1, 0)


def test_bulk_replace_is_atomic(temp_db):
    db.add_preregistered("Keep Me", 11)

    def broken_entries():
        yield ("Fine", 12)
        raise RuntimeError("reader failed mid-import")

    with pytest.raises(RuntimeError):
        db.bulk_replace_preregistered(broken_entries())

    assert [(r["seat_number"], r["name"]) for r in db.list_preregistered()] == [(11, "Keep Me")]


def test_delete_preregistered(temp_db):
    db.add_preregistered("Gone", 5)
    assert db.delete_preregistered(5) is True
    assert db.delete_preregistered(5) is False


# -----------------------------
# Students
# -----------------------------
def test_reset_all_then_list_is_empty(temp_db):
    db.signup_student("a@example.com", 1, "pw")
    db.signup_student("b@example.com", 2, "pw")

    assert db.reset_all_students() == 2
    assert db.list_students() == []


def test_reset_unknown_student_is_noop(temp_db):
    assert db.reset_student("does-not-exist") is False


def test_status_override_any_transition(temp_db):
    student = db.signup_student("a@example.com", 1, "pw")
    for status in ("need-help", "online", "absent", "need-help"):
        assert db.update_student_status(student["id"], status)["status"] == status


def test_status_override_rejects_unknown_values(temp_db):
    student = db.signup_student("a@example.com", 1, "pw")
    with pytest.raises(ValueError):
        db.update_student_status(student["id"], "sleeping")
    assert db.update_student_status("missing", "online") is None


def test_check_seat_states(temp_db):
    db.add_preregistered("Park", 2)
    db.signup_student("a@example.com", 1, "pw")

    assert db.check_seat(1) == {"available": False, "taken": True}
    assert db.check_seat(2) == {"available": True, "taken": False, "preRegistered": True, "name": "Park"}
    assert db.check_seat(3) == {"available": True, "taken": False, "preRegistered": False}


def test_check_seat_reports_bare_row_as_claimable(temp_db):
    db.set_attendance_codes("1234", None)
    code_login(4, "1234", now=MORNING)

    assert db.check_seat(4) == {"available": True, "taken": False, "preRegistered": False, "claimable": True}

    db.signup_student("claim@example.com", 4, "pw")
    assert db.check_seat(4) == {"available": False, "taken": True}


def test_check_seat_keeps_reserved_name_on_claimable_row(temp_db):
    db.set_attendance_codes("1234", None)
    db.add_preregistered("Choi Yuna", 9)
    code_login(9, "1234", now=MORNING)

    assert db.check_seat(9) == {
        "available": True,
        "taken": False,
        "preRegistered": True,
        "claimable": True,
        "name": "Choi Yuna",
    }
