"""Request bodies accepted by the HTTP API.

Every mutating body carries an optional ``version``: when supplied, the
write only succeeds if the complaint is still at that version.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from src.models.enums import (
    ComplaintCategory,
    ComplaintStatus,
    EscalationPriority,
    Urgency,
)

DESCRIPTION_MIN_LENGTH = 10
DESCRIPTION_MAX_LENGTH = 5000


class ComplaintSubmission(BaseModel):
    model_config = {"frozen": True}

    category: ComplaintCategory
    description: str = Field(min_length=DESCRIPTION_MIN_LENGTH, max_length=DESCRIPTION_MAX_LENGTH)
    urgency: Urgency


class VersionedRequest(BaseModel):
    version: int | None = Field(default=None, ge=1)


class CommentRequest(VersionedRequest):
    """Body for transitions that only take an optional comment."""

    comment: str | None = Field(default=None, max_length=2000)


class AssignRequest(CommentRequest):
    officer_id: str = Field(min_length=1)
    deadline: datetime | None = None


class DeadlineUpdateRequest(CommentRequest):
    deadline: datetime | None = None


class StatusUpdateRequest(CommentRequest):
    status: ComplaintStatus


class EscalationRequest(CommentRequest):
    reason: str = Field(min_length=1, max_length=1000)
    priority: EscalationPriority = EscalationPriority.HIGH
    escalated_to_id: str | None = None


class NoteRequest(VersionedRequest):
    text: str = Field(min_length=1, max_length=5000)
    internal: bool = True


class AnnouncementRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1, max_length=2000)


class EscalationConfigUpdate(BaseModel):
    """Partial update; omitted fields keep their current value."""

    enabled: bool | None = None
    unassigned_threshold_hours: int | None = Field(default=None, ge=1)
    overdue_threshold_hours: int | None = Field(default=None, ge=1)
    stuck_threshold_hours: int | None = Field(default=None, ge=1)
    high_urgency_threshold_hours: int | None = Field(default=None, ge=1)
    medium_urgency_threshold_hours: int | None = Field(default=None, ge=1)
    low_urgency_threshold_hours: int | None = Field(default=None, ge=1)
    scheduling_interval_seconds: int | None = Field(default=None, ge=1)
    warning_ratio: float | None = Field(default=None, gt=0.0, lt=1.0)
    escalation_sets_status: bool | None = None
    auto_escalation_target_id: str | None = None
    sweep_concurrency: int | None = Field(default=None, ge=1)
    per_candidate_timeout_seconds: float | None = Field(default=None, gt=0.0)
