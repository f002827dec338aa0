import os
from datetime import date
from zoneinfo import ZoneInfo

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Set testing environment before the app reads its settings
os.environ["TESTING"] = "1"
os.environ["TEST_DATABASE_URL"] = "sqlite:///./test_clinic_booking.db"

from clinic_booking.main import app
from clinic_booking.core.database import get_db, get_redis, Base
from clinic_booking.core.security import UserRole, create_access_token
from clinic_booking.models.doctor import DoctorProfile

# Create test database
SQLALCHEMY_DATABASE_URL = "sqlite:///./test_clinic_booking.db"
engine = create_engine(
    SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

def override_get_db():
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db

# 2030-01-07 is a Monday
MONDAY = date(2030, 1, 7)
TUESDAY = date(2030, 1, 8)
NEXT_MONDAY = date(2030, 1, 14)
PAST_MONDAY = date(2020, 1, 6)

DOCTOR_USER_ID = 100
OTHER_DOCTOR_USER_ID = 101
PATIENT_USER_ID = 1
OTHER_PATIENT_USER_ID = 2
RECEPTIONIST_USER_ID = 50
CLINIC_ID = 1

MONDAY_MORNING = {
    "monday": {
        "is_available": True,
        "slots": [{"start_time": "09:00", "end_time": "10:00"}],
    }
}

@pytest.fixture(scope="function")
def test_db():
    # Create tables
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)

@pytest.fixture
def db(test_db):
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()

@pytest.fixture
def fake_redis():
    redis_client = fakeredis.FakeRedis(decode_responses=True)
    app.dependency_overrides[get_redis] = lambda: redis_client
    yield redis_client
    app.dependency_overrides.pop(get_redis, None)

@pytest.fixture
def client(test_db, fake_redis):
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client

def make_doctor(db, user_id=DOCTOR_USER_ID, weekly_availability=None, **fields):
    doctor = DoctorProfile(
        user_id=user_id,
        clinic_id=CLINIC_ID,
        full_name=fields.pop("full_name", "Dr. Asha Rao"),
        specialization="General Medicine",
        slot_duration=fields.pop("slot_duration", 15),
        weekly_availability=MONDAY_MORNING if weekly_availability is None else weekly_availability,
        **fields
    )
    db.add(doctor)
    db.commit()
    db.refresh(doctor)
    return doctor

@pytest.fixture
def doctor(db):
    return make_doctor(db)

def auth_headers(user_id, role, clinic_id=None):
    token = create_access_token(user_id, role, clinic_id=clinic_id)
    return {"Authorization": f"Bearer {token}"}

@pytest.fixture
def patient_headers():
    return auth_headers(PATIENT_USER_ID, UserRole.PATIENT)

@pytest.fixture
def other_patient_headers():
    return auth_headers(OTHER_PATIENT_USER_ID, UserRole.PATIENT)

@pytest.fixture
def doctor_headers():
    return auth_headers(DOCTOR_USER_ID, UserRole.DOCTOR, clinic_id=CLINIC_ID)

@pytest.fixture
def receptionist_headers():
    return auth_headers(RECEPTIONIST_USER_ID, UserRole.RECEPTIONIST, clinic_id=CLINIC_ID)

@pytest.fixture
def clinic_clock(monkeypatch):
    """Pin the clinic's wall clock to a naive local datetime."""
    from clinic_booking.core.config import settings
    from clinic_booking.services import availability_service, booking_service

    def freeze(moment):
        now = moment.replace(tzinfo=ZoneInfo(settings.CLINIC_TIMEZONE))
        monkeypatch.setattr(availability_service, "clinic_now", lambda: now)
        monkeypatch.setattr(booking_service, "clinic_now", lambda: now)
        return now

    return freeze
