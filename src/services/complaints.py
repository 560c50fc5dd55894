"""Complaint intake, role-scoped queries, and dashboard statistics.

Workflow changes are not made here; they go through the lifecycle state
machine.  This service creates complaints and answers questions about
them.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import structlog

from src.models.complaint import Complaint
from src.models.enums import (
    ComplaintCategory,
    ComplaintStatus,
    Urgency,
)
from src.models.escalation import EscalationConfig, EscalationDecision
from src.models.request import DESCRIPTION_MAX_LENGTH, DESCRIPTION_MIN_LENGTH, ComplaintSubmission
from src.models.response import DashboardStats
from src.models.user import Principal
from src.services.attachments import AttachmentStore, UploadedFile
from src.services.errors import AuthorizationError, NotFoundError, ValidationError
from src.services.escalation_policy import escalation_outlook, find_candidates
from src.services.repository import ComplaintRepository
from src.services.timeline import build_event

logger = structlog.get_logger(__name__)

ANONYMOUS_PRINCIPAL = Principal(id="ANONYMOUS", full_name="Anonymous")

_PENDING: frozenset[ComplaintStatus] = frozenset({
    ComplaintStatus.NEW,
    ComplaintStatus.UNDER_REVIEW,
    ComplaintStatus.ASSIGNED,
    ComplaintStatus.IN_PROGRESS,
    ComplaintStatus.ESCALATED,
})
_DONE: frozenset[ComplaintStatus] = frozenset({ComplaintStatus.COMPLETED, ComplaintStatus.RESOLVED})


class ComplaintService:
    """Submission and read-side operations on complaints.

    Parameters
    ----------
    complaints:
        Complaint store.
    config:
        Returns the escalation config currently in force (the scheduler's,
        so a hot reload is picked up).
    attachments:
        Where uploaded files go.  ``None`` rejects uploads.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    __slots__ = ("_attachments", "_clock", "_complaints", "_config")

    def __init__(
        self,
        complaints: ComplaintRepository,
        config: Callable[[], EscalationConfig],
        attachments: AttachmentStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._complaints = complaints
        self._config = config
        self._attachments = attachments
        self._clock = clock or (lambda: datetime.now(UTC))

    def now(self) -> datetime:
        return self._clock()

    # ------------------------------------------------------------------
    # Intake
    # ------------------------------------------------------------------

    async def submit(
        self,
        submission: ComplaintSubmission,
        principal: Principal,
        attachment: UploadedFile | None = None,
    ) -> Complaint:
        """File a complaint on behalf of an authenticated user."""
        return await self._create(submission, principal, attachment, anonymous=False)

    async def submit_anonymous(
        self,
        submission: ComplaintSubmission,
        attachment: UploadedFile | None = None,
    ) -> Complaint:
        """File a complaint with no submitter recorded."""
        return await self._create(submission, ANONYMOUS_PRINCIPAL, attachment, anonymous=True)

    async def _create(
        self,
        submission: ComplaintSubmission,
        actor: Principal,
        attachment: UploadedFile | None,
        *,
        anonymous: bool,
    ) -> Complaint:
        description = submission.description.strip()
        if not DESCRIPTION_MIN_LENGTH <= len(description) <= DESCRIPTION_MAX_LENGTH:
            raise ValidationError(
                f"Description must be between {DESCRIPTION_MIN_LENGTH} and {DESCRIPTION_MAX_LENGTH} characters"
            )

        attachment_path: str | None = None
        if attachment is not None:
            if self._attachments is None:
                raise ValidationError("Attachments are not accepted")
            attachment_path = await self._attachments.save(
                attachment.filename, attachment.content_type, attachment.data
            )

        now = self._clock()
        complaint = Complaint(
            category=submission.category,
            description=description,
            urgency=submission.urgency,
            anonymous=anonymous,
            submitter_id=None if anonymous else actor.id,
            attachment_path=attachment_path,
            created_at=now,
            updated_at=now,
            status_changed_at=now,
        )
        text = "Anonymous complaint submitted" if anonymous else "Complaint submitted"
        event = build_event(complaint, actor, "SUBMITTED", text, internal=False, at=now)
        saved = await self._complaints.create(complaint, [event])
        logger.info(
            "complaints.submitted",
            complaint_id=saved.id,
            anonymous=anonymous,
            category=saved.category.value,
            urgency=saved.urgency.value,
            has_attachment=attachment_path is not None,
        )
        return saved

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get(self, complaint_id: str, principal: Principal) -> Complaint:
        complaint = await self._complaints.get(complaint_id)
        if complaint is None:
            raise NotFoundError(f"Complaint {complaint_id} not found")
        if principal.is_staff or complaint.is_submitted_by(principal.id):
            return complaint
        raise AuthorizationError("You can only view your own complaints")

    async def my_complaints(self, principal: Principal) -> list[Complaint]:
        mine = await self._complaints.list(lambda c: c.is_submitted_by(principal.id))
        return sorted(mine, key=lambda c: c.created_at, reverse=True)

    async def assigned_to_me(self, principal: Principal) -> list[Complaint]:
        """Caller's assignments, earliest deadline first, no-deadline last."""
        if not principal.is_staff:
            raise AuthorizationError("Only officers and admins have assigned complaints")
        assigned = await self._complaints.list(lambda c: c.assigned_to_id == principal.id)
        return sorted(assigned, key=lambda c: (c.deadline is None, c.deadline or c.created_at, c.created_at))

    async def all(self, principal: Principal) -> list[Complaint]:
        _require_admin(principal)
        return sorted(await self._complaints.list(), key=lambda c: c.created_at, reverse=True)

    async def escalated(self, principal: Principal) -> list[Complaint]:
        """Escalated complaints, most recently escalated first."""
        _require_admin(principal)
        escalated = await self._complaints.list(lambda c: c.is_escalated)
        return sorted(escalated, key=lambda c: c.escalated_at or c.created_at, reverse=True)

    async def unresolved(self, principal: Principal) -> list[tuple[Complaint, EscalationDecision]]:
        """Current escalation candidates: overdue ones first, then oldest first."""
        _require_admin(principal)
        now = self._clock()
        open_complaints = await self._complaints.list(lambda c: not c.is_terminal and not c.is_escalated)
        candidates = find_candidates(open_complaints, self._config(), now)

        def overdue(c: Complaint) -> bool:
            return c.deadline is not None and c.deadline < now

        return sorted(candidates, key=lambda pair: (not overdue(pair[0]), pair[0].created_at))

    async def filter(
        self,
        principal: Principal,
        *,
        status: ComplaintStatus | None = None,
        category: ComplaintCategory | None = None,
        urgency: Urgency | None = None,
    ) -> list[Complaint]:
        if not principal.is_staff:
            raise AuthorizationError("Only officers and admins can filter complaints")

        def matches(c: Complaint) -> bool:
            return (
                (status is None or c.status == status)
                and (category is None or c.category == category)
                and (urgency is None or c.urgency == urgency)
            )

        return sorted(await self._complaints.list(matches), key=lambda c: c.created_at, reverse=True)

    def outlook(self, complaint: Complaint) -> dict:
        return escalation_outlook(complaint, self._config(), self._clock()).to_dict()

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def dashboard_stats(self, principal: Principal) -> DashboardStats:
        if not principal.is_staff:
            raise AuthorizationError("Only officers and admins can view the dashboard")
        now = self._clock()
        complaints = await self._complaints.list()
        total = len(complaints)
        done = [c for c in complaints if c.status in _DONE]
        resolution_days = [(c.status_changed_at - c.created_at) / timedelta(days=1) for c in done]

        return DashboardStats(
            total_complaints=total,
            pending_complaints=sum(1 for c in complaints if c.status in _PENDING),
            resolved_complaints=len(done),
            escalated_complaints=sum(1 for c in complaints if c.is_escalated),
            overdue_complaints=sum(
                1 for c in complaints if c.deadline is not None and c.deadline < now and not c.is_terminal
            ),
            resolution_rate=round(len(done) / total * 100, 2) if total else 0.0,
            average_resolution_days=round(sum(resolution_days) / len(resolution_days), 2) if resolution_days else 0.0,
            complaints_by_status=_count(c.status.value for c in complaints),
            complaints_by_category=_count(c.category.value for c in complaints),
            complaints_by_urgency=_count(c.urgency.value for c in complaints),
        )


def _require_admin(principal: Principal) -> None:
    if not principal.is_admin:
        raise AuthorizationError("Admin access required")


def _count(values) -> dict[str, int]:
    return dict(sorted(Counter(values).items()))
