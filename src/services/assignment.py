"""Assignment manager: who works on a complaint, and by when."""

from __future__ import annotations

from datetime import datetime

import structlog

from src.models.complaint import Complaint
from src.models.enums import Role
from src.models.user import Principal, User
from src.services.errors import NotFoundError, ValidationError
from src.services.lifecycle import Assign, LifecycleStateMachine, Unassign, UpdateDeadline
from src.services.repository import UserRepository

logger = structlog.get_logger(__name__)


class AssignmentManager:
    """Thin facade over the state machine for assignment transitions.

    Officer existence and role are checked here so callers get a precise
    error before any complaint is loaded; the state machine re-checks
    them against the same user directory.
    """

    __slots__ = ("_machine", "_users")

    def __init__(self, machine: LifecycleStateMachine, users: UserRepository) -> None:
        self._machine = machine
        self._users = users

    async def assign(
        self,
        complaint_id: str,
        officer_id: str,
        actor: Principal,
        *,
        deadline: datetime | None = None,
        comment: str | None = None,
        expected_version: int | None = None,
    ) -> Complaint:
        officer = await self._users.get(officer_id)
        if officer is None:
            raise NotFoundError(f"Officer {officer_id} not found")
        if not officer.can_handle_complaints:
            raise ValidationError(f"User {officer_id} is not an officer or admin")

        complaint = await self._machine.execute(
            complaint_id,
            Assign(officer_id=officer_id, deadline=deadline),
            actor,
            comment,
            expected_version=expected_version,
        )
        logger.info("assignment.assigned", complaint_id=complaint_id, officer_id=officer_id, by=actor.id)
        return complaint

    async def unassign(
        self,
        complaint_id: str,
        actor: Principal,
        *,
        comment: str | None = None,
        expected_version: int | None = None,
    ) -> Complaint:
        return await self._machine.execute(
            complaint_id, Unassign(), actor, comment, expected_version=expected_version
        )

    async def update_deadline(
        self,
        complaint_id: str,
        deadline: datetime | None,
        actor: Principal,
        *,
        comment: str | None = None,
        expected_version: int | None = None,
    ) -> Complaint:
        """Set or clear (``deadline=None``) the deadline of an assigned complaint."""
        return await self._machine.execute(
            complaint_id, UpdateDeadline(deadline=deadline), actor, comment, expected_version=expected_version
        )

    async def list_assignable_officers(self) -> list[User]:
        officers = await self._users.with_role(Role.OFFICER)
        return sorted(officers, key=lambda u: (u.full_name or u.id).lower())

    async def list_escalation_targets(self) -> list[User]:
        """Officers and admins, i.e. everyone who can receive an escalation."""
        targets = await self._users.with_role(Role.OFFICER, Role.ADMIN)
        return sorted(targets, key=lambda u: (u.full_name or u.id).lower())
