"""Complaint lifecycle state machine.

Every workflow mutation -- human or automated -- goes through
:class:`LifecycleStateMachine`.  It is the single authority on whether a
transition is legal.

State graph
-----------
::

    NEW -> UNDER_REVIEW -> ASSIGNED -> IN_PROGRESS -> COMPLETED -> RESOLVED
                 \\________________\\____________\\__________-> CLOSED

``ESCALATED`` is an overlay: any non-terminal complaint can be escalated
(optionally forcing ``status = ESCALATED``) and de-escalated back to
``ASSIGNED`` or ``UNDER_REVIEW``.  ``RESOLVED`` and ``CLOSED`` are
terminal: every transition on them raises :class:`TerminalStateError`.

Two layers
----------
:func:`apply_transition` is pure: given a complaint snapshot it returns
the new complaint, the single timeline entry, and the single
notification-worthy :class:`LifecycleEvent`, or raises.

:meth:`LifecycleStateMachine.execute` loads the complaint, resolves the
users a transition refers to, calls :func:`apply_transition`, commits
complaint + timeline in one versioned repository write, and only then
hands the event to the notification sink (best-effort).
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Protocol

import structlog

from src.models.complaint import Complaint, TimelineEvent, as_utc
from src.models.enums import (
    ComplaintStatus,
    EscalationPriority,
    EscalationReason,
    EscalationSource,
    LifecycleEventKind,
    Role,
)
from src.models.user import Principal, User
from src.services.errors import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    TerminalStateError,
    ValidationError,
)
from src.services.repository import ComplaintRepository, UserRepository
from src.services.timeline import build_event

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Assign:
    officer_id: str
    deadline: datetime | None = None


@dataclass(frozen=True, slots=True)
class Unassign:
    pass


@dataclass(frozen=True, slots=True)
class StartProgress:
    pass


@dataclass(frozen=True, slots=True)
class MarkCompleted:
    pass


@dataclass(frozen=True, slots=True)
class MarkResolved:
    pass


@dataclass(frozen=True, slots=True)
class SetStatus:
    status: ComplaintStatus


@dataclass(frozen=True, slots=True)
class UpdateDeadline:
    deadline: datetime | None


@dataclass(frozen=True, slots=True)
class Escalate:
    reason: str
    priority: EscalationPriority = EscalationPriority.HIGH
    target_id: str | None = None
    source: EscalationSource = EscalationSource.MANUAL
    force_status: bool = True
    reason_code: EscalationReason | None = None


@dataclass(frozen=True, slots=True)
class DeEscalate:
    pass


Transition = (
    Assign | Unassign | StartProgress | MarkCompleted | MarkResolved | SetStatus | UpdateDeadline | Escalate | DeEscalate
)

_ASSIGNABLE_FROM: frozenset[ComplaintStatus] = frozenset({
    ComplaintStatus.NEW,
    ComplaintStatus.UNDER_REVIEW,
    ComplaintStatus.ESCALATED,
    ComplaintStatus.ASSIGNED,
    ComplaintStatus.IN_PROGRESS,
})
_ACTIVE_WORK: frozenset[ComplaintStatus] = frozenset({ComplaintStatus.ASSIGNED, ComplaintStatus.IN_PROGRESS})
_ADMIN_SETTABLE: frozenset[ComplaintStatus] = frozenset({
    ComplaintStatus.UNDER_REVIEW,
    ComplaintStatus.IN_PROGRESS,
    ComplaintStatus.CLOSED,
})


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class LifecycleEvent:
    """Notification-worthy result of one committed transition."""

    kind: LifecycleEventKind
    complaint: Complaint
    actor: Principal
    action: str
    comment: str
    internal: bool = False
    previous_status: ComplaintStatus | None = None
    previous_assignee_id: str | None = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True, slots=True)
class TransitionOutcome:
    complaint: Complaint
    timeline_event: TimelineEvent
    event: LifecycleEvent


class LifecycleEventSink(Protocol):
    """Receives events after commit.  Implemented by the dispatcher."""

    async def enqueue(self, event: LifecycleEvent) -> None: ...


# ---------------------------------------------------------------------------
# Pure transition logic
# ---------------------------------------------------------------------------


def apply_transition(
    complaint: Complaint,
    transition: Transition,
    actor: Principal,
    comment: str | None = None,
    *,
    now: datetime,
    users: Mapping[str, User] | None = None,
) -> TransitionOutcome:
    """Validate *transition* against *complaint* and compute the result.

    *users* must contain every user id the transition refers to
    (assignee, escalation target); a missing entry is a
    :class:`NotFoundError`.  The input complaint is never modified.
    """
    if complaint.is_terminal:
        raise TerminalStateError(
            f"Complaint {complaint.id} is {complaint.status.value}; no further workflow changes are allowed"
        )
    handler = _HANDLERS.get(type(transition))
    if handler is None:
        raise ValidationError(f"Unknown transition {type(transition).__name__}")

    changes, action, text, internal, kind = handler(complaint, transition, actor, comment, now, users or {})

    changes["updated_at"] = now
    new_status = changes.get("status", complaint.status)
    if new_status != complaint.status:
        changes["status_changed_at"] = now
    updated = complaint.model_copy(update=changes)

    timeline_event = build_event(updated, actor, action, text, internal=internal, at=now)
    event = LifecycleEvent(
        kind=kind,
        complaint=updated,
        actor=actor,
        action=action,
        comment=text,
        internal=internal,
        previous_status=complaint.status,
        previous_assignee_id=complaint.assigned_to_id,
        occurred_at=now,
    )
    return TransitionOutcome(complaint=updated, timeline_event=timeline_event, event=event)


_HandlerResult = tuple[dict, str, str, bool, LifecycleEventKind]


def _require_admin(actor: Principal, what: str) -> None:
    if not actor.is_admin:
        raise AuthorizationError(f"Only admins can {what}")


def _require_status(complaint: Complaint, allowed: frozenset[ComplaintStatus], what: str) -> None:
    if complaint.status not in allowed:
        raise InvalidTransitionError(f"Cannot {what} a complaint in status {complaint.status.value}")


def _lookup(users: Mapping[str, User], user_id: str, label: str) -> User:
    user = users.get(user_id)
    if user is None:
        raise NotFoundError(f"{label} {user_id} not found")
    return user


def _check_deadline(deadline: datetime | None, now: datetime) -> None:
    if deadline is not None and deadline <= now:
        raise ValidationError("Deadline must be in the future")


def _assign(c: Complaint, t: Assign, actor: Principal, comment: str | None, now: datetime, users: Mapping[str, User]) -> _HandlerResult:
    if not actor.has_any_role(Role.ADMIN, Role.OFFICER):
        raise AuthorizationError("Only admins and officers can assign complaints")
    _require_status(c, _ASSIGNABLE_FROM, "assign")
    officer = _lookup(users, t.officer_id, "Officer")
    if not officer.can_handle_complaints:
        raise ValidationError(f"User {officer.id} is not an officer or admin")
    if not actor.is_admin and Role.OFFICER not in officer.roles:
        raise AuthorizationError("Officers can only assign complaints to other officers")
    deadline = as_utc(t.deadline)
    _check_deadline(deadline, now)

    changes: dict = {"assigned_to_id": officer.id, "status": ComplaintStatus.ASSIGNED}
    if deadline is not None:
        changes["deadline"] = deadline
    elif c.assigned_to_id is None:
        changes["deadline"] = None
    return changes, "ASSIGNED", comment or "Complaint assigned", False, LifecycleEventKind.ASSIGNED


def _unassign(c: Complaint, t: Unassign, actor: Principal, comment: str | None, now: datetime, users: Mapping[str, User]) -> _HandlerResult:
    _require_admin(actor, "unassign complaints")
    _require_status(c, _ACTIVE_WORK, "unassign")
    changes = {"assigned_to_id": None, "deadline": None, "status": ComplaintStatus.UNDER_REVIEW}
    return changes, "UNASSIGNED", comment or "Complaint unassigned", True, LifecycleEventKind.STATUS_CHANGED


def _start_progress(c: Complaint, t: StartProgress, actor: Principal, comment: str | None, now: datetime, users: Mapping[str, User]) -> _HandlerResult:
    if not (actor.is_admin or (actor.is_officer and c.assigned_to_id == actor.id)):
        raise AuthorizationError("Only the assigned officer or an admin can start work on a complaint")
    _require_status(c, frozenset({ComplaintStatus.ASSIGNED}), "start work on")
    return {"status": ComplaintStatus.IN_PROGRESS}, "IN_PROGRESS", comment or "Work started on complaint", False, LifecycleEventKind.STATUS_CHANGED


def _mark_completed(c: Complaint, t: MarkCompleted, actor: Principal, comment: str | None, now: datetime, users: Mapping[str, User]) -> _HandlerResult:
    if not actor.is_officer:
        raise AuthorizationError("Only officers can mark complaints as completed")
    if c.assigned_to_id != actor.id and not actor.is_admin:
        raise AuthorizationError("Officers can only complete complaints assigned to them")
    _require_status(c, _ACTIVE_WORK, "complete")
    return {"status": ComplaintStatus.COMPLETED}, "COMPLETED", comment or "Complaint marked as completed", False, LifecycleEventKind.STATUS_CHANGED


def _mark_resolved(c: Complaint, t: MarkResolved, actor: Principal, comment: str | None, now: datetime, users: Mapping[str, User]) -> _HandlerResult:
    _require_admin(actor, "resolve complaints")
    _require_status(c, frozenset({ComplaintStatus.COMPLETED}), "resolve")
    return {"status": ComplaintStatus.RESOLVED}, "RESOLVED", comment or "Complaint resolved", False, LifecycleEventKind.STATUS_CHANGED


def _set_status(c: Complaint, t: SetStatus, actor: Principal, comment: str | None, now: datetime, users: Mapping[str, User]) -> _HandlerResult:
    _require_admin(actor, "override complaint status")
    if t.status not in _ADMIN_SETTABLE:
        allowed = ", ".join(sorted(s.value for s in _ADMIN_SETTABLE))
        raise ValidationError(f"Status can only be set to one of: {allowed}")
    if t.status == c.status:
        raise InvalidTransitionError(f"Complaint is already {c.status.value}")
    if t.status == ComplaintStatus.IN_PROGRESS and c.assigned_to_id is None:
        raise ValidationError("A complaint must be assigned before it can be in progress")
    text = comment or f"Status changed to {t.status.value}"
    return {"status": t.status}, t.status.value, text, False, LifecycleEventKind.STATUS_CHANGED


def _update_deadline(c: Complaint, t: UpdateDeadline, actor: Principal, comment: str | None, now: datetime, users: Mapping[str, User]) -> _HandlerResult:
    if c.assigned_to_id is None:
        raise ValidationError("Deadlines can only be set on assigned complaints")
    if not actor.is_admin:
        if not actor.is_officer:
            raise AuthorizationError("Only officers and admins can update deadlines")
        if c.assigned_to_id != actor.id:
            raise AuthorizationError("Officers can only update deadlines for complaints assigned to them")
    deadline = as_utc(t.deadline)
    _check_deadline(deadline, now)
    if deadline is None:
        text = comment or "Deadline cleared"
    else:
        text = comment or f"Deadline updated to {deadline.isoformat()}"
    return {"deadline": deadline}, "DEADLINE_UPDATED", text, True, LifecycleEventKind.DEADLINE_UPDATED


def _escalate(c: Complaint, t: Escalate, actor: Principal, comment: str | None, now: datetime, users: Mapping[str, User]) -> _HandlerResult:
    _require_admin(actor, "escalate complaints")
    if c.is_escalated:
        raise ConflictError(f"Complaint {c.id} is already escalated")
    reason = t.reason.strip()
    if not reason:
        raise ValidationError("An escalation reason is required")
    target: User | None = None
    if t.target_id is not None:
        target = _lookup(users, t.target_id, "Escalation target")
        if not target.can_handle_complaints:
            raise ValidationError(f"User {target.id} cannot receive escalations")

    changes: dict = {
        "is_escalated": True,
        "escalated_at": now,
        "escalated_to_id": target.id if target else None,
        "escalation_source": t.source,
        "escalation_reason": reason,
        "escalation_priority": t.priority,
    }
    if t.force_status:
        changes["status"] = ComplaintStatus.ESCALATED

    if t.source == EscalationSource.AUTOMATED:
        text = f"AUTOMATED ESCALATION: {reason}. Priority: {t.priority.value}"
    else:
        text = f"Complaint escalated by {actor.display_name}. Reason: {reason}. Priority: {t.priority.value}"
        if comment and comment.strip():
            text += f". Additional notes: {comment.strip()}"
    if target is not None:
        text += f" (Escalated to: {target.full_name or target.id})"
    return changes, "ESCALATED", text, False, LifecycleEventKind.ESCALATED


def _de_escalate(c: Complaint, t: DeEscalate, actor: Principal, comment: str | None, now: datetime, users: Mapping[str, User]) -> _HandlerResult:
    _require_admin(actor, "de-escalate complaints")
    if not c.is_escalated:
        raise InvalidTransitionError("Complaint is not currently escalated")
    changes = {
        "is_escalated": False,
        "escalated_at": None,
        "escalated_to_id": None,
        "escalation_source": None,
        "escalation_reason": None,
        "escalation_priority": None,
        "status": ComplaintStatus.ASSIGNED if c.assigned_to_id else ComplaintStatus.UNDER_REVIEW,
    }
    text = f"Complaint de-escalated by {actor.display_name}"
    if comment and comment.strip():
        text += f". Reason: {comment.strip()}"
    return changes, "DE_ESCALATED", text, False, LifecycleEventKind.STATUS_CHANGED


_HANDLERS: dict[type, Callable[..., _HandlerResult]] = {
    Assign: _assign,
    Unassign: _unassign,
    StartProgress: _start_progress,
    MarkCompleted: _mark_completed,
    MarkResolved: _mark_resolved,
    SetStatus: _set_status,
    UpdateDeadline: _update_deadline,
    Escalate: _escalate,
    DeEscalate: _de_escalate,
}


# ---------------------------------------------------------------------------
# LifecycleStateMachine
# ---------------------------------------------------------------------------


class LifecycleStateMachine:
    """Loads, transitions, and commits complaints.

    Parameters
    ----------
    complaints:
        Versioned complaint store.  Its ``commit`` writes the complaint and
        timeline entry atomically.
    users:
        Directory used to resolve assignees and escalation targets.
    sink:
        Optional receiver of committed :class:`LifecycleEvent` objects
        (the notification dispatcher).  Failures here are logged and
        never undo the commit.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    __slots__ = ("_clock", "_complaints", "_sink", "_users")

    def __init__(
        self,
        complaints: ComplaintRepository,
        users: UserRepository,
        sink: LifecycleEventSink | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._complaints = complaints
        self._users = users
        self._sink = sink
        self._clock = clock or (lambda: datetime.now(UTC))

    async def execute(
        self,
        complaint_id: str,
        transition: Transition,
        actor: Principal,
        comment: str | None = None,
        *,
        expected_version: int | None = None,
    ) -> Complaint:
        """Apply *transition* to the stored complaint, commit it, then notify.

        When *expected_version* is given, the write only succeeds if the
        complaint is still at that version; otherwise the version read
        here is used.  Either way a concurrent writer that got there first
        causes :class:`ConflictError`.
        """
        saved, event = await self.commit_transition(
            complaint_id, transition, actor, comment, expected_version=expected_version
        )
        await self.publish(event)
        return saved

    async def commit_transition(
        self,
        complaint_id: str,
        transition: Transition,
        actor: Principal,
        comment: str | None = None,
        *,
        expected_version: int | None = None,
    ) -> tuple[Complaint, LifecycleEvent]:
        """Load, apply and commit without notifying anyone.

        Returns the stored complaint and the event to hand to
        :meth:`publish`.  Callers that bound the transition with a timeout
        wrap only this step.
        """
        complaint = await self._complaints.get(complaint_id)
        if complaint is None:
            raise NotFoundError(f"Complaint {complaint_id} not found")
        if expected_version is not None and expected_version != complaint.version:
            raise ConflictError(
                f"Complaint {complaint_id} is at version {complaint.version}, not {expected_version}; reload and retry"
            )
        read_version = complaint.version

        users = await self._resolve_users(transition)
        outcome = apply_transition(complaint, transition, actor, comment, now=self._clock(), users=users)
        saved = await self._complaints.commit(outcome.complaint, read_version, [outcome.timeline_event])

        logger.info(
            "lifecycle.transition_applied",
            complaint_id=complaint_id,
            action=outcome.timeline_event.action,
            actor=actor.id,
            from_status=complaint.status.value,
            to_status=saved.status.value,
            version=saved.version,
        )

        return saved, replace(outcome.event, complaint=saved)

    async def _resolve_users(self, transition: Transition) -> dict[str, User]:
        ids: list[str] = []
        if isinstance(transition, Assign):
            ids.append(transition.officer_id)
        elif isinstance(transition, Escalate) and transition.target_id is not None:
            ids.append(transition.target_id)
        resolved: dict[str, User] = {}
        for user_id in ids:
            user = await self._users.get(user_id)
            if user is not None:
                resolved[user_id] = user
        return resolved

    async def publish(self, event: LifecycleEvent) -> None:
        """Hand a committed event to the sink.  Never raises."""
        if self._sink is None:
            return
        try:
            await self._sink.enqueue(event)
        except Exception:
            logger.warning(
                "lifecycle.notification_publish_failed",
                complaint_id=event.complaint.id,
                kind=event.kind.value,
                exc_info=True,
            )
