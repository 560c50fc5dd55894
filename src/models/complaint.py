"""Complaint and timeline models.

A :class:`Complaint` is the central record tracked through the lifecycle.
Its workflow fields (status, assignment, deadline, escalation) are only
ever changed by the lifecycle state machine, which bumps ``version`` on
every write so concurrent writers can detect each other.
"""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

from pydantic import BaseModel, Field

from src.models.enums import (
    ComplaintCategory,
    ComplaintStatus,
    EscalationPriority,
    EscalationSource,
    Urgency,
)

SYSTEM_ACTOR = "SYSTEM"


def _now() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class InternalNote(BaseModel):
    """Officer/admin-only note attached to a complaint."""

    model_config = {"frozen": True}

    author_id: str
    text: str
    created_at: datetime = Field(default_factory=_now)


class Complaint(BaseModel):
    """A submitted grievance and its workflow state."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    category: ComplaintCategory
    description: str
    urgency: Urgency
    anonymous: bool = False
    submitter_id: str | None = None

    status: ComplaintStatus = ComplaintStatus.NEW
    assigned_to_id: str | None = None
    deadline: datetime | None = None

    is_escalated: bool = False
    escalated_to_id: str | None = None
    escalated_at: datetime | None = None
    escalation_source: EscalationSource | None = None
    escalation_reason: str | None = None
    escalation_priority: EscalationPriority | None = None

    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)
    status_changed_at: datetime = Field(default_factory=_now)
    attachment_path: str | None = None
    internal_notes: list[InternalNote] = Field(default_factory=list)
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def is_submitted_by(self, user_id: str) -> bool:
        return not self.anonymous and self.submitter_id is not None and self.submitter_id == user_id


class TimelineEvent(BaseModel):
    """Append-only audit entry for one complaint."""

    model_config = {"frozen": True}

    id: str = Field(default_factory=lambda: uuid4().hex)
    complaint_id: str
    actor: str  # user id or "SYSTEM"
    actor_name: str = "System"
    action: str
    status: ComplaintStatus
    comment: str = ""
    is_internal_note: bool = False
    created_at: datetime = Field(default_factory=_now)
