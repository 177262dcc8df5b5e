import hashlib
import hmac
import logging
import re
import secrets
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Iterator, Literal, TypedDict

from backend.clock import to_iso
from backend.config import (
    ADMIN_PASSWORD,
    ADMIN_USERNAME,
    DB_PATH,
)

logger = logging.getLogger(__name__)

PASSWORD_HASH_ALGO = "pbkdf2_sha256"
PASSWORD_HASH_ITERATIONS = 120_000

ATTENDANCE_CODE_ID = "default"
ATTENDANCE_CODE_PATTERN = re.compile(r"[0-9]{4}")

StudentStatus = Literal["online", "need-help", "absent"]
STUDENT_STATUSES: tuple[str, ...] = ("online", "need-help", "absent")


class StudentRecord(TypedDict):
    id: str
    name: str | None
    email: str | None
    seat_number: int
    status: StudentStatus
    last_active: str | None
    attendance_verified: str | None
    has_credentials: bool
    created_at: str | None


class PreRegisteredRecord(TypedDict):
    id: int
    name: str
    seat_number: int


class AttendanceCodes(TypedDict):
    morning_code: str | None
    afternoon_code: str | None


class DirectoryError(Exception):
    code = "CONFLICT"
    message = "Seat directory conflict."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        if message:
            self.message = message


class EmailExists(DirectoryError):
    code = "EMAIL_EXISTS"
    message = "Email already exists"


class SeatTaken(DirectoryError):
    code = "SEAT_TAKEN"
    message = "Seat number already taken"


class SeatOccupied(DirectoryError):
    code = "SEAT_OCCUPIED"
    message = "This seat already has a registered student"


def _hash_password(password: str, *, salt: str | None = None) -> str:
    salt_value = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt_value.encode("utf-8"),
        PASSWORD_HASH_ITERATIONS,
    ).hex()
    return f"{PASSWORD_HASH_ALGO}${PASSWORD_HASH_ITERATIONS}${salt_value}${digest}"


def _verify_password(password: str, password_hash: str) -> bool:
    try:
        algo, rounds_text, salt_value, expected_digest = password_hash.split("$", 3)
        rounds = int(rounds_text)
    except (ValueError, TypeError, AttributeError):
        return False

    if algo != PASSWORD_HASH_ALGO or rounds <= 0:
        return False

    candidate_digest = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode("utf-8"),
        salt_value.encode("utf-8"),
        rounds,
    ).hex()
    return hmac.compare_digest(candidate_digest, expected_digest)


def connect_db():
    conn = sqlite3.connect(str(DB_PATH), check_same_thread=False)
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


@contextmanager
def _transaction() -> Iterator[sqlite3.Connection]:
    """
    Run a block of statements as one write transaction.

    BEGIN IMMEDIATE takes the write lock up front so read-then-write checks
    inside the block cannot interleave with another writer.
    """
    conn = connect_db()
    try:
        conn.execute("BEGIN IMMEDIATE")
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _ensure_default_admin(cursor: sqlite3.Cursor) -> None:
    username = (ADMIN_USERNAME or "").strip()
    password = (ADMIN_PASSWORD or "").strip()
    if not username or not password:
        return

    cursor.execute(
        """
        SELECT id
        FROM admin_users
        WHERE username = ? COLLATE NOCASE
        """,
        (username,),
    )
    if cursor.fetchone():
        return

    cursor.execute(
        """
        INSERT INTO admin_users (username, password_hash)
        VALUES (?, ?)
        """,
        (username, _hash_password(password)),
    )
    logger.info("Seeded default admin user %r", username)


def create_tables():
    conn = connect_db()
    cursor = conn.cursor()

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS students (
        id TEXT PRIMARY KEY,
        name TEXT,
        email TEXT UNIQUE COLLATE NOCASE,
        password_hash TEXT,
        seat_number INTEGER NOT NULL UNIQUE,
        status TEXT NOT NULL DEFAULT 'absent'
            CHECK (status IN ('online', 'need-help', 'absent')),
        last_active TEXT,                -- ISO-8601 UTC
        attendance_verified TEXT,        -- ISO-8601 UTC
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS preregistered_students (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        seat_number INTEGER NOT NULL UNIQUE,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    # Single well-known row keyed ATTENDANCE_CODE_ID.
    cursor.execute("""
    CREATE TABLE IF NOT EXISTS attendance_codes (
        id TEXT PRIMARY KEY,
        morning_code TEXT,
        afternoon_code TEXT,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """)

    cursor.execute(
        """
    CREATE TABLE IF NOT EXISTS admin_users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        username TEXT NOT NULL UNIQUE COLLATE NOCASE,
        password_hash TEXT NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """
    )

    _ensure_default_admin(cursor)

    conn.commit()
    conn.close()


# -----------------------------
# Admin users
# -----------------------------
def create_admin_user(username: str, password: str) -> int:
    clean_username = username.strip()
    clean_password = password.strip()
    if not clean_username or not clean_password:
        raise ValueError("Username and password are required.")

    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO admin_users (username, password_hash)
        VALUES (?, ?)
        """,
        (clean_username, _hash_password(clean_password)),
    )
    admin_id = cur.lastrowid
    conn.commit()
    conn.close()
    return admin_id


def verify_admin_credentials(username: str, password: str) -> dict | None:
    clean_username = username.strip()
    clean_password = password.strip()
    if not clean_username or not clean_password:
        return None

    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT id, username, password_hash
        FROM admin_users
        WHERE username = ? COLLATE NOCASE
        """,
        (clean_username,),
    )
    row = cur.fetchone()
    conn.close()

    if not row:
        return None

    admin_id, saved_username, password_hash = row
    if not _verify_password(clean_password, password_hash):
        return None

    return {"id": admin_id, "username": saved_username}


# -----------------------------
# Attendance codes
# -----------------------------
def _clean_attendance_code(value: str | None, label: str) -> str | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str) or not ATTENDANCE_CODE_PATTERN.fullmatch(value):
        raise ValueError(f"{label} code must be 4 digits")
    return value


def get_attendance_codes() -> AttendanceCodes:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT morning_code, afternoon_code
        FROM attendance_codes
        WHERE id = ?
        """,
        (ATTENDANCE_CODE_ID,),
    )
    row = cur.fetchone()
    conn.close()

    if not row:
        return {"morning_code": None, "afternoon_code": None}
    return {"morning_code": row[0], "afternoon_code": row[1]}


def set_attendance_codes(morning_code: str | None, afternoon_code: str | None) -> AttendanceCodes:
    """Upsert both codes; an empty or missing value clears the stored one."""
    morning = _clean_attendance_code(morning_code, "Morning")
    afternoon = _clean_attendance_code(afternoon_code, "Afternoon")

    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        """
        INSERT INTO attendance_codes (id, morning_code, afternoon_code)
        VALUES (?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            morning_code = excluded.morning_code,
            afternoon_code = excluded.afternoon_code,
            updated_at = CURRENT_TIMESTAMP
        """,
        (ATTENDANCE_CODE_ID, morning, afternoon),
    )
    conn.commit()
    conn.close()
    return {"morning_code": morning, "afternoon_code": afternoon}


# -----------------------------
# Students
# -----------------------------
_STUDENT_COLUMNS = """
    id, name, email, seat_number, status, last_active,
    attendance_verified, password_hash, created_at
"""


def _student_from_row(row) -> StudentRecord:
    return {
        "id": row[0],
        "name": row[1],
        "email": row[2],
        "seat_number": int(row[3]),
        "status": row[4],
        "last_active": row[5],
        "attendance_verified": row[6],
        "has_credentials": bool(row[2] or row[7]),
        "created_at": row[8],
    }


def _fetch_student(cur: sqlite3.Cursor, student_id: str) -> StudentRecord | None:
    cur.execute(f"SELECT {_STUDENT_COLUMNS} FROM students WHERE id = ?", (student_id,))
    row = cur.fetchone()
    return _student_from_row(row) if row else None


def _consume_preregistration(cur: sqlite3.Cursor, seat_number: int) -> str | None:
    """Delete the seat's reservation (if any) and hand back the reserved name."""
    cur.execute(
        "SELECT name FROM preregistered_students WHERE seat_number = ?",
        (seat_number,),
    )
    row = cur.fetchone()
    if not row:
        return None
    cur.execute("DELETE FROM preregistered_students WHERE seat_number = ?", (seat_number,))
    return row[0]


def list_students() -> list[StudentRecord]:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"SELECT {_STUDENT_COLUMNS} FROM students ORDER BY seat_number")
    rows = cur.fetchall()
    conn.close()
    return [_student_from_row(r) for r in rows]


def get_student(student_id: str) -> StudentRecord | None:
    conn = connect_db()
    cur = conn.cursor()
    student = _fetch_student(cur, student_id)
    conn.close()
    return student


def get_student_by_seat(seat_number: int) -> StudentRecord | None:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(f"SELECT {_STUDENT_COLUMNS} FROM students WHERE seat_number = ?", (seat_number,))
    row = cur.fetchone()
    conn.close()
    return _student_from_row(row) if row else None


def check_seat(seat_number: int) -> dict:
    """
    Seat availability check used before signup.

    A student row without credentials (left by code-login) can still be
    claimed by signup, so it reports as available with `claimable` set.
    """
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        "SELECT email, password_hash, name FROM students WHERE seat_number = ?",
        (seat_number,),
    )
    student_row = cur.fetchone()
    if student_row:
        conn.close()
        email, password_hash, name = student_row
        if email or password_hash:
            return {"available": False, "taken": True}
        result = {"available": True, "taken": False, "preRegistered": bool(name), "claimable": True}
        if name:
            result["name"] = name
        return result

    cur.execute(
        "SELECT name FROM preregistered_students WHERE seat_number = ?",
        (seat_number,),
    )
    row = cur.fetchone()
    conn.close()
    if row:
        return {"available": True, "taken": False, "preRegistered": True, "name": row[0]}
    return {"available": True, "taken": False, "preRegistered": False}


def signup_student(email: str, seat_number: int, password: str) -> StudentRecord:
    """
    Create (or claim) the student for a seat.

    A row created by code-login without credentials is claimed in place; any
    row that already has an email or password makes the seat taken. The seat's
    pre-registration is consumed in the same transaction.
    """
    clean_email = email.strip()
    if not clean_email:
        raise ValueError("Email is required.")
    if not password:
        raise ValueError("Password is required.")

    password_hash = _hash_password(password)

    try:
        with _transaction() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT 1 FROM students WHERE email = ? COLLATE NOCASE",
                (clean_email,),
            )
            if cur.fetchone():
                raise EmailExists()

            cur.execute(
                "SELECT id, email, password_hash FROM students WHERE seat_number = ?",
                (seat_number,),
            )
            seat_row = cur.fetchone()
            if seat_row and (seat_row[1] or seat_row[2]):
                raise SeatTaken()

            reserved_name = _consume_preregistration(cur, seat_number)

            if seat_row:
                student_id = seat_row[0]
                cur.execute(
                    """
                    UPDATE students
                    SET email = ?,
                        password_hash = ?,
                        name = COALESCE(name, ?)
                    WHERE id = ?
                    """,
                    (clean_email, password_hash, reserved_name, student_id),
                )
            else:
                student_id = uuid.uuid4().hex
                cur.execute(
                    """
                    INSERT INTO students (id, name, email, password_hash, seat_number)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (student_id, reserved_name, clean_email, password_hash, seat_number),
                )

            return _fetch_student(cur, student_id)
    except sqlite3.IntegrityError as exc:
        # Lost a race against another writer; the unique index is the authority.
        if "email" in str(exc).lower():
            raise EmailExists() from exc
        raise SeatTaken() from exc


def record_code_login(seat_number: int, *, now: datetime) -> StudentRecord | None:
    """
    Mark the seat's student online and verified, creating the row on first login.

    Returns None when a concurrent writer won the seat.
    """
    stamp = to_iso(now)
    try:
        with _transaction() as conn:
            cur = conn.cursor()
            cur.execute("SELECT id FROM students WHERE seat_number = ?", (seat_number,))
            row = cur.fetchone()
            if row:
                student_id = row[0]
                cur.execute(
                    """
                    UPDATE students
                    SET status = 'online',
                        last_active = ?,
                        attendance_verified = ?
                    WHERE id = ?
                    """,
                    (stamp, stamp, student_id),
                )
            else:
                student_id = uuid.uuid4().hex
                reserved_name = _consume_preregistration(cur, seat_number)
                cur.execute(
                    """
                    INSERT INTO students
                        (id, name, seat_number, status, last_active, attendance_verified)
                    VALUES (?, ?, ?, 'online', ?, ?)
                    """,
                    (student_id, reserved_name, seat_number, stamp, stamp),
                )
            return _fetch_student(cur, student_id)
    except sqlite3.IntegrityError:
        logger.warning("Code login for seat %s lost a concurrent write", seat_number)
        return None


def mark_attendance_verified(student_id: str, *, now: datetime) -> bool:
    stamp = to_iso(now)
    conn = connect_db()
    cur = conn.cursor()
    cur.execute(
        """
        UPDATE students
        SET attendance_verified = ?,
            last_active = ?
        WHERE id = ?
        """,
        (stamp, stamp, student_id),
    )
    updated = cur.rowcount > 0
    conn.commit()
    conn.close()
    return updated


def update_student_status(
    student_id: str,
    status: str,
    *,
    now: datetime | None = None,
) -> StudentRecord | None:
    if status not in STUDENT_STATUSES:
        raise ValueError("Invalid status.")

    conn = connect_db()
    cur = conn.cursor()
    if now is None:
        cur.execute("UPDATE students SET status = ? WHERE id = ?", (status, student_id))
    else:
        cur.execute(
            "UPDATE students SET status = ?, last_active = ? WHERE id = ?",
            (status, to_iso(now), student_id),
        )
    if cur.rowcount == 0:
        conn.close()
        return None
    conn.commit()
    student = _fetch_student(cur, student_id)
    conn.close()
    return student


def reset_student(student_id: str) -> bool:
    """Hard-delete one student. Unknown ids are a no-op and return False."""
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("DELETE FROM students WHERE id = ?", (student_id,))
    deleted = cur.rowcount > 0
    conn.commit()
    conn.close()
    return deleted


def reset_all_students() -> int:
    with _transaction() as conn:
        cur = conn.cursor()
        cur.execute("DELETE FROM students")
        return cur.rowcount


# -----------------------------
# Pre-registration
# -----------------------------
def _preregistered_from_row(row) -> PreRegisteredRecord:
    return {"id": int(row[0]), "name": row[1], "seat_number": int(row[2])}


def list_preregistered() -> list[PreRegisteredRecord]:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("""
        SELECT id, name, seat_number
        FROM preregistered_students
        ORDER BY seat_number
    """)
    rows = cur.fetchall()
    conn.close()
    return [_preregistered_from_row(r) for r in rows]


def add_preregistered(name: str, seat_number: int) -> PreRegisteredRecord:
    """Reserve a seat for a name; re-adding an existing reservation renames it."""
    clean_name = name.strip()
    if not clean_name or seat_number < 1:
        raise ValueError("Name and seat number are required")

    with _transaction() as conn:
        cur = conn.cursor()
        cur.execute("SELECT 1 FROM students WHERE seat_number = ?", (seat_number,))
        if cur.fetchone():
            raise SeatOccupied()

        cur.execute(
            """
            INSERT INTO preregistered_students (name, seat_number)
            VALUES (?, ?)
            ON CONFLICT(seat_number) DO UPDATE SET name = excluded.name
            """,
            (clean_name, seat_number),
        )
        cur.execute(
            "SELECT id, name, seat_number FROM preregistered_students WHERE seat_number = ?",
            (seat_number,),
        )
        return _preregistered_from_row(cur.fetchone())


def delete_preregistered(seat_number: int) -> bool:
    conn = connect_db()
    cur = conn.cursor()
    cur.execute("DELETE FROM preregistered_students WHERE seat_number = ?", (seat_number,))
    deleted = cur.rowcount > 0
    conn.commit()
    conn.close()
    return deleted


def bulk_replace_preregistered(entries: Iterable[tuple[str, int]]) -> list[PreRegisteredRecord]:
    """
    Replace every reservation with `entries` in one transaction.

    Later duplicates of a seat are skipped, as are seats already owned by a
    student, so the result never overlaps the students table.
    """
    with _transaction() as conn:
        cur = conn.cursor()
        cur.execute("DELETE FROM preregistered_students")

        cur.execute("SELECT seat_number FROM students")
        occupied = {int(r[0]) for r in cur.fetchall()}

        seen: set[int] = set()
        skipped = 0
        for name, seat_number in entries:
            clean_name = (name or "").strip()
            if not clean_name or seat_number < 1 or seat_number in seen or seat_number in occupied:
                skipped += 1
                continue
            seen.add(seat_number)
            cur.execute(
                """
                INSERT INTO preregistered_students (name, seat_number)
                VALUES (?, ?)
                """,
                (clean_name, seat_number),
            )

        if skipped:
            logger.info("Bulk pre-registration skipped %d entries", skipped)

        cur.execute("""
            SELECT id, name, seat_number
            FROM preregistered_students
            ORDER BY seat_number
        """)
        return [_preregistered_from_row(r) for r in cur.fetchall()]
