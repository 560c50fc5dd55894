"""Shared fixtures for the ResolveDesk test suite.

Environment overrides are applied before anything imports
``config.settings`` so the app under test never starts the background
scheduler or writes uploads into the working tree.
"""

from __future__ import annotations

import os
import tempfile
from datetime import UTC, datetime, timedelta

os.environ.setdefault("RESOLVEDESK_ENABLE_BACKGROUND_SCHEDULER", "false")
os.environ.setdefault("RESOLVEDESK_NOTIFICATION_WORKER_ENABLED", "false")
os.environ.setdefault("RESOLVEDESK_UPLOAD_DIR", tempfile.mkdtemp(prefix="resolvedesk-uploads-"))
os.environ.setdefault("RESOLVEDESK_JWT_SECRET", "test-secret")
os.environ.setdefault("LOG_FORMAT", "console")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest

from src.models.complaint import Complaint
from src.models.enums import ComplaintCategory, Role, Urgency
from src.models.escalation import EscalationConfig
from src.models.user import Principal
from src.services.lifecycle import LifecycleEvent, LifecycleStateMachine
from src.services.repository import (
    InMemoryComplaintRepository,
    InMemoryNotificationRepository,
    InMemoryUserRepository,
)

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingSink:
    """Lifecycle event sink that just remembers what it was given."""

    def __init__(self) -> None:
        self.events: list[LifecycleEvent] = []

    async def enqueue(self, event: LifecycleEvent) -> None:
        self.events.append(event)


def make_complaint(
    *,
    created_at: datetime = NOW,
    urgency: Urgency = Urgency.MEDIUM,
    category: ComplaintCategory = ComplaintCategory.BILLING,
    submitter_id: str | None = "user1",
    **overrides: object,
) -> Complaint:
    """Build an unsaved complaint with every timestamp pinned to *created_at*."""
    fields: dict = {
        "category": category,
        "description": "Charged twice for the same order",
        "urgency": urgency,
        "submitter_id": submitter_id,
        "created_at": created_at,
        "updated_at": created_at,
        "status_changed_at": created_at,
    }
    fields.update(overrides)
    return Complaint(**fields)


# ---------------------------------------------------------------------------
# Principals
# ---------------------------------------------------------------------------

ADMIN = Principal(id="admin1", roles=frozenset({Role.ADMIN}), full_name="Asha Verma")
OFFICER = Principal(id="officer1", roles=frozenset({Role.OFFICER}), full_name="Ravi Nair")
OFFICER_2 = Principal(id="officer2", roles=frozenset({Role.OFFICER}), full_name="Meera Iyer")
SUBMITTER = Principal(id="user1", roles=frozenset({Role.USER}), full_name="Karan Mehta")
STRANGER = Principal(id="user2", roles=frozenset({Role.USER}), full_name="Someone Else")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> EscalationConfig:
    return EscalationConfig()


@pytest.fixture
def complaints() -> InMemoryComplaintRepository:
    return InMemoryComplaintRepository()


@pytest.fixture
def users() -> InMemoryUserRepository:
    return InMemoryUserRepository(p.to_user() for p in (ADMIN, OFFICER, OFFICER_2, SUBMITTER))


@pytest.fixture
def notification_store() -> InMemoryNotificationRepository:
    return InMemoryNotificationRepository()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def machine(
    complaints: InMemoryComplaintRepository,
    users: InMemoryUserRepository,
    sink: RecordingSink,
    clock: FakeClock,
) -> LifecycleStateMachine:
    return LifecycleStateMachine(complaints, users, sink=sink, clock=clock)
