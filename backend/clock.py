from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Literal

from backend.config import AFTERNOON_END_HOUR, MORNING_END_HOUR, UTC_OFFSET_HOURS

SessionName = Literal["morning", "afternoon"]
Clock = Callable[[], datetime]

LOCAL_TZ = timezone(timedelta(hours=UTC_OFFSET_HOURS))


@dataclass(frozen=True)
class SessionWindow:
    session: SessionName
    is_valid: bool
    local_time: datetime


def system_clock() -> datetime:
    return datetime.now(timezone.utc)


def get_clock() -> Clock:
    """FastAPI dependency; tests swap it through app.dependency_overrides."""
    return system_clock


def to_local(now: datetime) -> datetime:
    if now.tzinfo is None:
        # naive values are treated as UTC
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(LOCAL_TZ)


def resolve_session_window(now: datetime) -> SessionWindow:
    """
    Classify an instant into the attendance session it belongs to.

      - local hour < MORNING_END_HOUR   => morning (valid)
      - local hour < AFTERNOON_END_HOUR => afternoon (valid)
      - otherwise                       => afternoon (closed until midnight)
    """
    local = to_local(now)
    if local.hour < MORNING_END_HOUR:
        return SessionWindow(session="morning", is_valid=True, local_time=local)
    return SessionWindow(
        session="afternoon",
        is_valid=local.hour < AFTERNOON_END_HOUR,
        local_time=local,
    )


def local_date(now: datetime) -> str:
    return to_local(now).strftime("%Y-%m-%d")


def to_iso(now: datetime) -> str:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="seconds")


def parse_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
