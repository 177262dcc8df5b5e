import os
import secrets
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parents[1]

DB_PATH = Path(os.getenv("BOOTCAMP_DB_PATH", BASE_DIR / "database" / "bootcamp.db"))
ADMIN_USERNAME = os.getenv("BOOTCAMP_ADMIN_USERNAME", "admin").strip() or "admin"
ADMIN_PASSWORD = os.getenv("BOOTCAMP_ADMIN_PASSWORD", "admin123").strip() or "admin123"
SIGNING_KEY = (
    os.getenv("BOOTCAMP_SIGNING_KEY", "").strip()
    or secrets.token_urlsafe(32)
)
# 12 hours, fixed from issuance
AUTH_TOKEN_TTL_SECONDS = int(os.getenv("BOOTCAMP_AUTH_TOKEN_TTL_SECONDS", "43200"))


def _parse_bool(value: str | None, fallback: bool) -> bool:
    if value is None:
        return fallback
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return fallback


def _parse_csv(value: str | None, fallback: list[str]) -> list[str]:
    if not value:
        return fallback
    parsed = [item.strip() for item in value.split(",") if item.strip()]
    return parsed or fallback


def _parse_hour(value: str | None, fallback: int) -> int:
    if not value:
        return fallback
    try:
        hour = int(value.strip())
    except ValueError:
        return fallback
    if 0 <= hour <= 24:
        return hour
    return fallback


CORS_ALLOW_ORIGINS = _parse_csv(
    os.getenv("BOOTCAMP_CORS_ALLOW_ORIGINS"),
    ["http://localhost:3000", "http://127.0.0.1:3000"],
)
CORS_ALLOW_METHODS = _parse_csv(
    os.getenv("BOOTCAMP_CORS_ALLOW_METHODS"),
    ["GET", "POST", "PUT", "DELETE", "OPTIONS"],
)
CORS_ALLOW_HEADERS = _parse_csv(
    os.getenv("BOOTCAMP_CORS_ALLOW_HEADERS"),
    ["Authorization", "Content-Type", "Accept"],
)
CORS_ALLOW_CREDENTIALS = _parse_bool(os.getenv("BOOTCAMP_CORS_ALLOW_CREDENTIALS"), True)
ENABLE_DEBUG_ENDPOINTS = _parse_bool(os.getenv("BOOTCAMP_ENABLE_DEBUG_ENDPOINTS"), False)

LOG_LEVEL = os.getenv("BOOTCAMP_LOG_LEVEL", "INFO").strip().upper() or "INFO"

# Attendance windows are evaluated in a fixed-offset local time (KST by default).
UTC_OFFSET_HOURS = int(os.getenv("BOOTCAMP_UTC_OFFSET_HOURS", "9"))
MORNING_END_HOUR = _parse_hour(os.getenv("BOOTCAMP_MORNING_END_HOUR"), 13)
AFTERNOON_END_HOUR = _parse_hour(os.getenv("BOOTCAMP_AFTERNOON_END_HOUR"), 21)
