import base64
import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from typing import Any

from fastapi import Depends, Header, HTTPException

from backend.config import AUTH_TOKEN_TTL_SECONDS, SIGNING_KEY


@dataclass(frozen=True)
class AdminSession:
    admin_id: int
    username: str
    issued_at: int
    expires_at: int


@dataclass(frozen=True)
class StudentSession:
    student_id: str
    seat_number: int
    issued_at: int
    expires_at: int


Session = AdminSession | StudentSession


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


def _sign(payload_b64: str) -> str:
    digest = hmac.new(
        SIGNING_KEY.encode("utf-8"),
        payload_b64.encode("ascii"),
        hashlib.sha256,
    ).digest()
    return _b64url_encode(digest)


def _encode(payload: dict[str, Any]) -> str:
    payload_json = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    payload_b64 = _b64url_encode(payload_json.encode("utf-8"))
    return f"{payload_b64}.{_sign(payload_b64)}"


def issue_admin_token(admin_id: int, username: str) -> tuple[str, AdminSession]:
    now = int(time.time())
    exp = now + AUTH_TOKEN_TTL_SECONDS
    token = _encode({
        "sub": str(admin_id),
        "name": username,
        "role": "admin",
        "iat": now,
        "exp": exp,
    })
    return token, AdminSession(admin_id=admin_id, username=username, issued_at=now, expires_at=exp)


def issue_student_token(student_id: str, seat_number: int) -> tuple[str, StudentSession]:
    now = int(time.time())
    exp = now + AUTH_TOKEN_TTL_SECONDS
    token = _encode({
        "sub": student_id,
        "seat": seat_number,
        "role": "student",
        "iat": now,
        "exp": exp,
    })
    return token, StudentSession(student_id=student_id, seat_number=seat_number, issued_at=now, expires_at=exp)


def decode_session_token(token: str) -> Session | None:
    if not token or "." not in token:
        return None

    payload_b64, signature = token.split(".", 1)
    expected = _sign(payload_b64)
    if not hmac.compare_digest(signature, expected):
        return None

    try:
        payload_raw = _b64url_decode(payload_b64).decode("utf-8")
        payload = json.loads(payload_raw)
    except (ValueError, UnicodeDecodeError):
        return None

    if not isinstance(payload, dict):
        return None

    sub = payload.get("sub")
    iat = payload.get("iat")
    exp = payload.get("exp")
    if not isinstance(sub, str) or not sub.strip():
        return None
    if not isinstance(exp, int) or not isinstance(iat, int):
        return None
    if exp < int(time.time()):
        return None

    role = payload.get("role")
    if role == "admin":
        name = payload.get("name")
        if not sub.isdigit() or not isinstance(name, str):
            return None
        return AdminSession(admin_id=int(sub), username=name, issued_at=iat, expires_at=exp)
    if role == "student":
        seat = payload.get("seat")
        if not isinstance(seat, int):
            return None
        return StudentSession(student_id=sub, seat_number=seat, issued_at=iat, expires_at=exp)
    return None


def require_session(authorization: str | None = Header(default=None)) -> Session:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing bearer token.")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="Invalid authorization scheme.")

    session = decode_session_token(token.strip())
    if session is None:
        raise HTTPException(status_code=401, detail="Invalid or expired session token.")

    return session


def require_admin(session: Session = Depends(require_session)) -> AdminSession:
    if isinstance(session, AdminSession):
        return session
    raise HTTPException(status_code=401, detail="Unauthorized")


def require_student(session: Session = Depends(require_session)) -> StudentSession:
    if isinstance(session, StudentSession):
        return session
    raise HTTPException(status_code=401, detail="Unauthorized")


def describe_session(session: Session) -> dict[str, Any]:
    if isinstance(session, AdminSession):
        return {
            "id": session.admin_id,
            "role": "admin",
            "username": session.username,
            "issued_at": session.issued_at,
            "expires_at": session.expires_at,
        }
    if isinstance(session, StudentSession):
        return {
            "id": session.student_id,
            "role": "student",
            "seatNumber": session.seat_number,
            "issued_at": session.issued_at,
            "expires_at": session.expires_at,
        }
    raise TypeError(f"Unknown session type: {type(session).__name__}")
