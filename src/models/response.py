from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from src.models.complaint import Complaint, InternalNote
from src.models.enums import (
    ComplaintCategory,
    ComplaintStatus,
    EscalationPriority,
    EscalationSource,
    Urgency,
)
from src.models.user import Principal, User


class MessageResponse(BaseModel):
    message: str


class ComplaintResponse(BaseModel):
    """Caller-facing view of a complaint.

    Internal notes and the escalation outlook are only filled in for
    officers and admins.
    """

    id: str
    category: ComplaintCategory
    description: str
    urgency: Urgency
    anonymous: bool
    submitter_id: str | None
    status: ComplaintStatus
    assigned_to_id: str | None
    deadline: datetime | None
    overdue: bool
    is_escalated: bool
    escalated_to_id: str | None
    escalated_at: datetime | None
    escalation_source: EscalationSource | None
    escalation_reason: str | None
    escalation_priority: EscalationPriority | None
    created_at: datetime
    updated_at: datetime
    attachment_path: str | None
    version: int
    internal_notes: list[InternalNote] = Field(default_factory=list)
    escalation_outlook: dict | None = None

    @classmethod
    def build(
        cls,
        complaint: Complaint,
        viewer: Principal | None,
        now: datetime,
        outlook: dict | None = None,
    ) -> ComplaintResponse:
        staff = viewer is not None and viewer.is_staff
        data = complaint.model_dump(exclude={"internal_notes", "status_changed_at"})
        return cls(
            **data,
            overdue=bool(complaint.deadline and complaint.deadline < now and not complaint.is_terminal),
            internal_notes=list(complaint.internal_notes) if staff else [],
            escalation_outlook=outlook if staff else None,
        )


class UserResponse(BaseModel):
    id: str
    full_name: str
    email: str
    roles: list[str]

    @classmethod
    def build(cls, user: User) -> UserResponse:
        return cls(id=user.id, full_name=user.full_name, email=user.email, roles=sorted(r.value for r in user.roles))


class DashboardStats(BaseModel):
    total_complaints: int
    pending_complaints: int
    resolved_complaints: int
    escalated_complaints: int
    overdue_complaints: int
    resolution_rate: float
    average_resolution_days: float
    complaints_by_status: dict[str, int]
    complaints_by_category: dict[str, int]
    complaints_by_urgency: dict[str, int]
