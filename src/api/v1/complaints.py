"""Complaint API endpoints.

Submission (authenticated and anonymous), workflow transitions,
role-scoped listings, notes and timeline.  Every workflow change goes
through the lifecycle state machine; routes only decode requests, check
the coarse role, and render the result.
"""

from __future__ import annotations

import pydantic
from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile

from src.middleware.auth import get_principal, require_roles
from src.models.complaint import Complaint, TimelineEvent
from src.models.enums import ComplaintCategory, ComplaintStatus, Role, Urgency
from src.models.request import (
    AssignRequest,
    CommentRequest,
    ComplaintSubmission,
    DeadlineUpdateRequest,
    EscalationRequest,
    NoteRequest,
    StatusUpdateRequest,
)
from src.models.response import ComplaintResponse, DashboardStats, UserResponse
from src.models.user import Principal
from src.services.attachments import UploadedFile
from src.services.errors import AttachmentTooLargeError, ValidationError
from src.services.lifecycle import (
    DeEscalate,
    Escalate,
    MarkCompleted,
    MarkResolved,
    SetStatus,
    StartProgress,
    Transition,
)

router = APIRouter(prefix="/complaints", tags=["complaints"])

_READ_CHUNK = 64 * 1024

_staff = require_roles(Role.OFFICER, Role.ADMIN)
_admin = require_roles(Role.ADMIN)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _render(request: Request, complaint: Complaint, principal: Principal | None) -> ComplaintResponse:
    service = request.app.state.complaint_service
    outlook = service.outlook(complaint) if principal is not None and principal.is_staff else None
    return ComplaintResponse.build(complaint, principal, service.now(), outlook)


def _render_all(request: Request, complaints: list[Complaint], principal: Principal) -> list[ComplaintResponse]:
    return [_render(request, c, principal) for c in complaints]


def _submission(category: ComplaintCategory, description: str, urgency: Urgency) -> ComplaintSubmission:
    try:
        return ComplaintSubmission(category=category, description=description, urgency=urgency)
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        raise ValidationError(f"{'.'.join(str(p) for p in first['loc'])}: {first['msg']}") from None


async def _read_upload(request: Request, upload: UploadFile | None) -> UploadedFile | None:
    if upload is None or not upload.filename:
        return None
    store = request.app.state.attachments
    size = 0
    chunks: list[bytes] = []
    while chunk := await upload.read(_READ_CHUNK):
        size += len(chunk)
        if size > store.max_bytes:
            raise AttachmentTooLargeError(f"Attachment exceeds the {store.max_bytes // (1024 * 1024)} MB limit")
        chunks.append(chunk)
    return UploadedFile(
        filename=upload.filename,
        content_type=upload.content_type or "application/octet-stream",
        data=b"".join(chunks),
    )


async def _execute(
    request: Request,
    complaint_id: str,
    transition: Transition,
    principal: Principal,
    comment: str | None,
    version: int | None,
) -> ComplaintResponse:
    complaint = await request.app.state.lifecycle.execute(
        complaint_id, transition, principal, comment, expected_version=version
    )
    return _render(request, complaint, principal)


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


@router.post("/submit", status_code=201, response_model=ComplaintResponse)
async def submit_complaint(
    request: Request,
    category: ComplaintCategory = Form(...),  # noqa: B008
    description: str = Form(...),  # noqa: B008
    urgency: Urgency = Form(...),  # noqa: B008
    attachment: UploadFile | None = File(default=None),  # noqa: B008
    principal: Principal = Depends(get_principal),  # noqa: B008
) -> ComplaintResponse:
    """Submit a complaint as the signed-in user, optionally with one attachment."""
    submission = _submission(category, description, urgency)
    upload = await _read_upload(request, attachment)
    complaint = await request.app.state.complaint_service.submit(submission, principal, upload)
    return _render(request, complaint, principal)


@router.post("/submit/anonymous", status_code=201, response_model=ComplaintResponse)
async def submit_anonymous_complaint(
    request: Request,
    category: ComplaintCategory = Form(...),  # noqa: B008
    description: str = Form(...),  # noqa: B008
    urgency: Urgency = Form(...),  # noqa: B008
    attachment: UploadFile | None = File(default=None),  # noqa: B008
) -> ComplaintResponse:
    """Submit a complaint without signing in.  No submitter is recorded."""
    submission = _submission(category, description, urgency)
    upload = await _read_upload(request, attachment)
    complaint = await request.app.state.complaint_service.submit_anonymous(submission, upload)
    return _render(request, complaint, None)


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------


@router.put("/assign/{complaint_id}", response_model=ComplaintResponse)
async def assign_complaint(
    complaint_id: str,
    body: AssignRequest,
    request: Request,
    principal: Principal = Depends(_staff),  # noqa: B008
) -> ComplaintResponse:
    complaint = await request.app.state.assignment.assign(
        complaint_id,
        body.officer_id,
        principal,
        deadline=body.deadline,
        comment=body.comment,
        expected_version=body.version,
    )
    return _render(request, complaint, principal)


@router.put("/unassign/{complaint_id}", response_model=ComplaintResponse)
async def unassign_complaint(
    complaint_id: str,
    request: Request,
    body: CommentRequest | None = None,
    principal: Principal = Depends(_admin),  # noqa: B008
) -> ComplaintResponse:
    body = body or CommentRequest()
    complaint = await request.app.state.assignment.unassign(
        complaint_id, principal, comment=body.comment, expected_version=body.version
    )
    return _render(request, complaint, principal)


@router.put("/deadline/{complaint_id}", response_model=ComplaintResponse)
async def update_deadline(
    complaint_id: str,
    body: DeadlineUpdateRequest,
    request: Request,
    principal: Principal = Depends(_staff),  # noqa: B008
) -> ComplaintResponse:
    """Set a new deadline, or clear it with ``"deadline": null``."""
    complaint = await request.app.state.assignment.update_deadline(
        complaint_id, body.deadline, principal, comment=body.comment, expected_version=body.version
    )
    return _render(request, complaint, principal)


# ---------------------------------------------------------------------------
# Status transitions
# ---------------------------------------------------------------------------


@router.put("/start/{complaint_id}", response_model=ComplaintResponse)
async def start_progress(
    complaint_id: str,
    request: Request,
    body: CommentRequest | None = None,
    principal: Principal = Depends(_staff),  # noqa: B008
) -> ComplaintResponse:
    body = body or CommentRequest()
    return await _execute(request, complaint_id, StartProgress(), principal, body.comment, body.version)


@router.put("/complete/{complaint_id}", response_model=ComplaintResponse)
async def mark_completed(
    complaint_id: str,
    request: Request,
    body: CommentRequest | None = None,
    principal: Principal = Depends(require_roles(Role.OFFICER)),  # noqa: B008
) -> ComplaintResponse:
    body = body or CommentRequest()
    return await _execute(request, complaint_id, MarkCompleted(), principal, body.comment, body.version)


@router.put("/resolve/{complaint_id}", response_model=ComplaintResponse)
async def mark_resolved(
    complaint_id: str,
    request: Request,
    body: CommentRequest | None = None,
    principal: Principal = Depends(_admin),  # noqa: B008
) -> ComplaintResponse:
    body = body or CommentRequest()
    return await _execute(request, complaint_id, MarkResolved(), principal, body.comment, body.version)


@router.put("/status/{complaint_id}", response_model=ComplaintResponse)
async def update_status(
    complaint_id: str,
    body: StatusUpdateRequest,
    request: Request,
    principal: Principal = Depends(_admin),  # noqa: B008
) -> ComplaintResponse:
    """Admin status override.  ``RESOLVED`` goes through the resolve rule."""
    transition: Transition = MarkResolved() if body.status == ComplaintStatus.RESOLVED else SetStatus(body.status)
    return await _execute(request, complaint_id, transition, principal, body.comment, body.version)


@router.post("/escalate/{complaint_id}", response_model=ComplaintResponse)
async def escalate_complaint(
    complaint_id: str,
    body: EscalationRequest,
    request: Request,
    principal: Principal = Depends(_admin),  # noqa: B008
) -> ComplaintResponse:
    transition = Escalate(reason=body.reason, priority=body.priority, target_id=body.escalated_to_id)
    return await _execute(request, complaint_id, transition, principal, body.comment, body.version)


@router.put("/de-escalate/{complaint_id}", response_model=ComplaintResponse)
async def de_escalate_complaint(
    complaint_id: str,
    request: Request,
    comment: str | None = Query(default=None, max_length=2000),  # noqa: B008
    version: int | None = Query(default=None, ge=1),  # noqa: B008
    principal: Principal = Depends(_admin),  # noqa: B008
) -> ComplaintResponse:
    return await _execute(request, complaint_id, DeEscalate(), principal, comment, version)


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


@router.get("/my", response_model=list[ComplaintResponse])
async def my_complaints(
    request: Request,
    principal: Principal = Depends(get_principal),  # noqa: B008
) -> list[ComplaintResponse]:
    complaints = await request.app.state.complaint_service.my_complaints(principal)
    return _render_all(request, complaints, principal)


@router.get("/assigned", response_model=list[ComplaintResponse])
async def assigned_complaints(
    request: Request,
    principal: Principal = Depends(_staff),  # noqa: B008
) -> list[ComplaintResponse]:
    complaints = await request.app.state.complaint_service.assigned_to_me(principal)
    return _render_all(request, complaints, principal)


@router.get("/admin/all", response_model=list[ComplaintResponse])
async def all_complaints(
    request: Request,
    principal: Principal = Depends(_admin),  # noqa: B008
) -> list[ComplaintResponse]:
    complaints = await request.app.state.complaint_service.all(principal)
    return _render_all(request, complaints, principal)


@router.get("/admin/escalated", response_model=list[ComplaintResponse])
async def escalated_complaints(
    request: Request,
    principal: Principal = Depends(_admin),  # noqa: B008
) -> list[ComplaintResponse]:
    complaints = await request.app.state.complaint_service.escalated(principal)
    return _render_all(request, complaints, principal)


@router.get("/admin/unresolved")
async def unresolved_complaints(
    request: Request,
    principal: Principal = Depends(_admin),  # noqa: B008
) -> list[dict]:
    """Complaints that currently breach an escalation rule, overdue first."""
    pairs = await request.app.state.complaint_service.unresolved(principal)
    return [
        {
            "complaint": _render(request, complaint, principal),
            "reason_code": decision.reason_code,
            "suggested_priority": decision.suggested_priority,
            "detail": decision.detail,
        }
        for complaint, decision in pairs
    ]


@router.get("/admin/dashboard", response_model=DashboardStats)
async def dashboard(
    request: Request,
    principal: Principal = Depends(_staff),  # noqa: B008
) -> DashboardStats:
    return await request.app.state.complaint_service.dashboard_stats(principal)


@router.get("/filter", response_model=list[ComplaintResponse])
async def filter_complaints(
    request: Request,
    status: ComplaintStatus | None = None,
    category: ComplaintCategory | None = None,
    urgency: Urgency | None = None,
    principal: Principal = Depends(_staff),  # noqa: B008
) -> list[ComplaintResponse]:
    complaints = await request.app.state.complaint_service.filter(
        principal, status=status, category=category, urgency=urgency
    )
    return _render_all(request, complaints, principal)


@router.get("/officers", response_model=list[UserResponse])
async def list_officers(
    request: Request,
    principal: Principal = Depends(_admin),  # noqa: B008
) -> list[UserResponse]:
    officers = await request.app.state.assignment.list_assignable_officers()
    return [UserResponse.build(u) for u in officers]


@router.get("/officers-and-admins", response_model=list[UserResponse])
async def list_escalation_targets(
    request: Request,
    principal: Principal = Depends(_admin),  # noqa: B008
) -> list[UserResponse]:
    targets = await request.app.state.assignment.list_escalation_targets()
    return [UserResponse.build(u) for u in targets]


# ---------------------------------------------------------------------------
# Notes and timeline
# ---------------------------------------------------------------------------


@router.post("/notes/{complaint_id}", status_code=201, response_model=ComplaintResponse)
async def add_note(
    complaint_id: str,
    body: NoteRequest,
    request: Request,
    principal: Principal = Depends(_staff),  # noqa: B008
) -> ComplaintResponse:
    complaint = await request.app.state.timeline.add_note(
        complaint_id, body.text, principal, internal=body.internal, expected_version=body.version
    )
    return _render(request, complaint, principal)


@router.get("/notes/{complaint_id}", response_model=list[TimelineEvent])
async def list_notes(
    complaint_id: str,
    request: Request,
    principal: Principal = Depends(_staff),  # noqa: B008
) -> list[TimelineEvent]:
    return await request.app.state.timeline.internal_notes(complaint_id, principal)


@router.get("/{complaint_id}/timeline", response_model=list[TimelineEvent])
async def complaint_timeline(
    complaint_id: str,
    request: Request,
    include_internal: bool = Query(default=False, alias="includeInternal"),  # noqa: B008
    principal: Principal = Depends(get_principal),  # noqa: B008
) -> list[TimelineEvent]:
    """Complaint history, oldest first.  Submitters never see internal entries."""
    return await request.app.state.timeline.get_timeline_for(complaint_id, principal, include_internal)


@router.get("/{complaint_id}", response_model=ComplaintResponse)
async def get_complaint(
    complaint_id: str,
    request: Request,
    principal: Principal = Depends(get_principal),  # noqa: B008
) -> ComplaintResponse:
    complaint = await request.app.state.complaint_service.get(complaint_id, principal)
    return _render(request, complaint, principal)
