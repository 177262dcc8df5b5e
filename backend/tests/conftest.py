from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

import backend.config as config
import backend.main as main
import database.db as db
from backend.clock import get_clock


class FixedClock:
    """Settable stand-in for the wall clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def set_local(self, hour: int, minute: int = 0) -> None:
        # local time is UTC+9; 2026-03-02 is an arbitrary weekday
        utc_hour = (hour - 9) % 24
        day = 2 if hour >= 9 else 1
        self.now = datetime(2026, 3, day, utc_hour, minute, tzinfo=timezone.utc)


@pytest.fixture()
def clock():
    fixed = FixedClock(datetime(2026, 3, 2, 1, 0, tzinfo=timezone.utc))  # 10:00 local
    return fixed


@pytest.fixture()
def temp_db(tmp_path, monkeypatch):
    test_db = tmp_path / "bootcamp_test.db"

    # Point DB to a temp file for isolation.
    monkeypatch.setattr(config, "DB_PATH", test_db)
    monkeypatch.setattr(db, "DB_PATH", test_db)

    db.create_tables()
    return test_db


@pytest.fixture()
def client(temp_db, clock):
    main.app.dependency_overrides[get_clock] = lambda: clock
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()


@pytest.fixture()
def admin_headers(client):
    res = client.post(
        "/auth/login",
        json={
            "username": config.ADMIN_USERNAME,
            "password": config.ADMIN_PASSWORD,
        },
    )
    assert res.status_code == 200
    token = res.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def codes(temp_db):
    db.set_attendance_codes("1234", "5678")
    return {"morning": "1234", "afternoon": "5678"}


@pytest.fixture()
def student_login(client):
    def _login(seat_number, code):
        return client.post(
            "/auth/student/login",
            json={"seatNumber": str(seat_number), "attendanceCode": code},
        )

    return _login


@pytest.fixture()
def student_headers(student_login, codes):
    res = student_login(5, codes["morning"])
    assert res.status_code == 200
    token = res.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}
