"""
Shared fixtures: the workflow core wired on in-memory stores with a
deterministic clock and the mock e-mail provider.
"""
import os

os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("EMAIL_PROVIDER", "mock")

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from services.authorization import Actor
from services.bootstrap import build_services
from services.email_service import EmailProvider, EmailService
from services.storage import build_stores


class TickingClock:
    """Advances one second per call so every timestamp is distinct."""

    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


STUDENT = Actor("student-1", "student")
OTHER_STUDENT = Actor("student-2", "student")
ADMISSIONS = Actor("appr-admissions", "approver", "admissions")
ADMISSIONS_2 = Actor("appr-admissions-2", "approver", "admissions")
FINANCE = Actor("appr-finance", "approver", "finance")
REGISTRAR = Actor("appr-registrar", "approver", "registrar")
SCHOLARSHIP = Actor("appr-scholarship", "approver", "scholarship")
ADMIN_APPROVER = Actor("appr-admin", "approver", "admin")
ADMIN = Actor("admin-1", "admin", "admin")

FILE_META = {
    "file_ref": "/uploads/transcript.pdf",
    "file_name": "transcript.pdf",
    "file_type": "application/pdf",
    "file_size": 120_000,
}

USERS = [
    {"id": STUDENT.id, "email": "student1@docflow.edu", "role": "student", "is_active": True},
    {"id": ADMISSIONS.id, "email": "admissions@docflow.edu", "role": "approver",
     "department": "admissions", "is_active": True},
    {"id": ADMISSIONS_2.id, "email": "admissions2@docflow.edu", "role": "approver",
     "department": "admissions", "is_active": False},
    {"id": FINANCE.id, "email": "finance@docflow.edu", "role": "approver",
     "department": "finance", "is_active": True},
    {"id": REGISTRAR.id, "email": "registrar@docflow.edu", "role": "approver",
     "department": "registrar", "is_active": True},
]


def two_stage_workflow(document_type="admission", first="admissions", second="registrar", name=None):
    return {
        "name": name or f"{document_type.title()} Workflow",
        "document_type": document_type,
        "stages": [
            {"department": first, "order": 1, "time_limit_hours": 24},
            {"department": second, "order": 2, "time_limit_hours": 48},
        ],
    }


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def stores():
    return build_stores("memory")


@pytest.fixture
def email_service():
    return EmailService(provider=EmailProvider.MOCK)


@pytest_asyncio.fixture
async def hub(stores, email_service, clock):
    services = build_services(
        stores,
        email_service=email_service,
        notifications_enabled=True,
        record_assignment_history=False,
        clock=clock,
    )
    yield services
    await services.dispatcher.drain()


@pytest_asyncio.fixture
async def seeded_hub(hub):
    for user in USERS:
        await hub.stores["users"].create(dict(user))
    return hub
