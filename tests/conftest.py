# tests/conftest.py
"""
Pytest configuration and fixtures.

The settings object is built at import time, so the environment is pointed at
an in-memory SQLite database and mock providers before anything from
`admissions` is imported.
"""

import os
import sys
from datetime import date
from pathlib import Path

project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AUTO_CREATE_SCHEMA"] = "false"
os.environ["EMAIL_PROVIDER"] = "mock"
os.environ["WHATSAPP_PROVIDER"] = "mock"
os.environ["PUBLIC_API_BASE_URL"] = "https://api.example.test"
os.environ["LEARNER_SIGNIN_URL"] = "https://learn.example.test/sign-in"

import pytest

import admissions.models  # noqa: F401
from admissions.database.database import Base, SessionLocal, engine
from admissions.models.program import Cohort, Program
from admissions.services.channel_service import ChannelAdapter, ChannelRegistry, DeliveryError
from admissions.services.submission_service import ApplicationSubmissionService


class RecordingChannel(ChannelAdapter):
    """Accepts everything and remembers what it was asked to send"""

    def __init__(self, name="email"):
        self.name = name
        self.sent = []

    def send(self, to, subject, body):
        self.sent.append({"to": to, "subject": subject, "body": body})
        return {"mode": "test", "provider_id": f"{self.name}-{len(self.sent)}"}


class FlakyChannel(RecordingChannel):
    """Fails the first `failures` sends, then behaves like RecordingChannel"""

    def __init__(self, name="email", failures=1):
        super().__init__(name)
        self.failures = failures

    def send(self, to, subject, body):
        if self.failures > 0:
            self.failures -= 1
            raise DeliveryError("provider unavailable")
        return super().send(to, subject, body)


@pytest.fixture()
def db():
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def email_channel():
    return RecordingChannel("email")


@pytest.fixture()
def whatsapp_channel():
    return RecordingChannel("whatsapp")


@pytest.fixture()
def channels(email_channel, whatsapp_channel):
    return ChannelRegistry(email=email_channel, whatsapp=whatsapp_channel)


@pytest.fixture()
def program(db):
    program = Program(slug="full-stack", title="Full Stack Bootcamp")
    db.add(program)
    db.commit()
    return program


@pytest.fixture()
def cohort(db, program):
    cohort = Cohort(program_id=program.id, name="Spring", status="open", start_date=date(2026, 3, 1))
    db.add(cohort)
    db.commit()
    return cohort


@pytest.fixture()
def submit(db, program):
    """Factory: submit a public application for `program`"""

    def _submit(full_name="Ada Lovelace", email="ada@example.com", phone=None, **kwargs):
        return ApplicationSubmissionService(db).submit(
            program.id, full_name=full_name, email=email, phone=phone, **kwargs
        )

    return _submit
