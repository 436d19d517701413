import json
import os
from datetime import date, datetime, time, timedelta, timezone

import pytest
import redis
from jose import jwt

# Set testing environment before the app reads its settings
os.environ["TESTING"] = "1"
os.environ["TEST_DATABASE_URL"] = "sqlite:///./test_appointments.db"

from fastapi.testclient import TestClient  # noqa: E402

from app.main import app  # noqa: E402
from app.core.database import Base, SessionLocal, engine, get_redis  # noqa: E402
from app.core.config import settings  # noqa: E402
from app.models import appointment, availability  # noqa: E402,F401
from app.schemas.appointment import AppointmentCreate  # noqa: E402
from app.schemas.availability import AvailabilityEntry  # noqa: E402
from app.services.availability_service import AvailabilityService  # noqa: E402
from app.services.events import EventPublisher  # noqa: E402
from app.services.scheduling import DayOfWeek  # noqa: E402

DOCTOR_ID = 10
OTHER_DOCTOR_ID = 11
PATIENT_ID = 100
OTHER_PATIENT_ID = 101
ADMIN_ID = 1


class RecordingRedis:
    """Stands in for the Redis connection and remembers every publish."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.messages = []

    def publish(self, channel, message):
        if self.fail:
            raise redis.ConnectionError("Connection refused")
        self.messages.append((channel, json.loads(message)))
        return 1

    def channels(self):
        return [channel for channel, _ in self.messages]

    def payloads(self, channel):
        return [payload for name, payload in self.messages if name == channel]


def upcoming(weekday: DayOfWeek, weeks_ahead: int = 1) -> date:
    """A date strictly after today falling on ``weekday``."""
    today = date.today()
    days = (weekday.ordinal - today.weekday()) % 7 or 7
    return today + timedelta(days=days + 7 * (weeks_ahead - 1))


def encode_token(claims: dict, expires_delta: timedelta = timedelta(minutes=30)) -> str:
    """Sign ``claims`` the way the gateway does."""
    to_encode = {**claims, "exp": datetime.now(timezone.utc) + expires_delta}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def bearer(claims: dict) -> dict:
    return {"Authorization": f"Bearer {encode_token(claims)}"}


def auth_headers(user_id: int, role: str) -> dict:
    return bearer({"sub": str(user_id), "role": role, "token_type": "access"})


def booking(day: date, start: time, duration: int = 30, doctor_id: int = DOCTOR_ID, **extra) -> AppointmentCreate:
    return AppointmentCreate(
        doctor_id=doctor_id,
        appointment_date=day,
        appointment_time=start,
        duration_minutes=duration,
        **extra
    )


@pytest.fixture(scope="function")
def test_db():
    # Create tables
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(test_db):
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def redis_double():
    return RecordingRedis()


@pytest.fixture
def events(redis_double):
    return EventPublisher(redis_double, enabled=True)


@pytest.fixture
def open_week(db):
    """Doctor open 09:00-17:00 Monday to Friday, closed at weekends."""
    entries = [
        AvailabilityEntry(day_of_week=day, is_available=True, start_time=time(9, 0), end_time=time(17, 0))
        for day in list(DayOfWeek)[:5]
    ] + [
        AvailabilityEntry(day_of_week=DayOfWeek.SATURDAY, is_available=False),
        AvailabilityEntry(day_of_week=DayOfWeek.SUNDAY, is_available=False),
    ]
    AvailabilityService(db).set_weekly_schedule(DOCTOR_ID, entries)
    return entries


@pytest.fixture
def client(test_db, redis_double):
    app.dependency_overrides[get_redis] = lambda: redis_double
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def patient_headers():
    return auth_headers(PATIENT_ID, "patient")


@pytest.fixture
def doctor_headers():
    return auth_headers(DOCTOR_ID, "doctor")


@pytest.fixture
def admin_headers():
    return auth_headers(ADMIN_ID, "admin")
