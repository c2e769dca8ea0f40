"""Shared fixtures: a fresh SQLite store per test and a fake email transport."""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest
import pytest_asyncio
from jose import jwt

from config import Settings, get_settings
from notifications import build_services
from notifications.email_service import EmailTransport
from notifications.errors import ChannelDeliveryError
from sqlite_db import SQLiteDatabase

NOW = datetime(2025, 3, 3, 12, 0, tzinfo=timezone.utc)

PATIENT_ID = "patient-1"
OTHER_PATIENT_ID = "patient-2"
ADMIN_ID = "admin-1"


class FakeEmailTransport(EmailTransport):
    """Records every send; raises ChannelDeliveryError when `fail_with` is set."""

    def __init__(self) -> None:
        self.sent: List[dict] = []
        self.fail_with: Optional[str] = None

    async def send(self, to: str, subject: str, html: str, text: str) -> None:
        if self.fail_with:
            raise ChannelDeliveryError(self.fail_with)
        self.sent.append({"to": to, "subject": subject, "html": html, "text": text})


def make_settings(**overrides) -> Settings:
    values = {
        "jwt_secret_key": "test-secret",
        "internal_api_key": "test-internal-key",
        "smtp_username": "mailer",
        "smtp_password": "secret",
        "scheduler_enabled": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def create_access_token(user_id: str) -> str:
    """Sign a bearer token the way the platform auth service does."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {"sub": user_id, "exp": now + timedelta(hours=1), "iat": now}
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def email() -> FakeEmailTransport:
    return FakeEmailTransport()


@pytest_asyncio.fixture
async def db(tmp_path):
    database = SQLiteDatabase(str(tmp_path / "test.db"))
    await database.connect()
    await database.users.insert_many([
        {"_id": PATIENT_ID, "email": "ann@example.com", "role": "PATIENT"},
        {"_id": OTHER_PATIENT_ID, "email": "bob@example.com", "role": "PATIENT"},
        {"_id": ADMIN_ID, "email": "admin@example.com", "role": "ADMIN"},
    ])
    yield database
    await database.close()


@pytest.fixture
def services(db, settings, email):
    return build_services(db, settings=settings, email_transport=email)


async def seed_appointment(
    db,
    appointment_id: str = "appt-1",
    starts_in: timedelta = timedelta(minutes=90),
    status: str = "CONFIRMED",
    patient_id: str = PATIENT_ID,
    meeting_link: Optional[str] = None,
    clinic_name: Optional[str] = "Downtown Clinic",
) -> dict:
    """Insert an appointment starting `starts_in` after NOW."""
    doc = {
        "_id": appointment_id,
        "scheduledDateTime": NOW + starts_in,
        "status": status,
        "type": "ONLINE" if meeting_link else "PHYSICAL",
        "patient": {"name": "Ann Patient", "userId": patient_id},
        "doctor": {"name": "Lee", "clinicName": clinic_name, "clinicAddress": "1 Main St"},
    }
    if meeting_link:
        doc["meetingLink"] = meeting_link
    await db.appointments.insert_one(doc)
    return doc
