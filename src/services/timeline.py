"""Per-complaint audit timeline.

Entries are append-only.  They are written by the lifecycle state
machine in the same repository commit as the state change they
describe, and by :meth:`TimelineLog.add_note` for free-form notes.
Reads are restartable: nothing about a previous call is retained.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime

import structlog

from src.models.complaint import Complaint, InternalNote, TimelineEvent
from src.models.user import Principal
from src.services.errors import AuthorizationError, NotFoundError, ValidationError
from src.services.repository import ComplaintRepository

logger = structlog.get_logger(__name__)

_MAX_NOTE_LENGTH = 5000


def build_event(
    complaint: Complaint,
    actor: Principal,
    action: str,
    comment: str,
    *,
    internal: bool,
    at: datetime,
) -> TimelineEvent:
    """Create the timeline entry describing *complaint*'s new state."""
    return TimelineEvent(
        complaint_id=complaint.id,
        actor=actor.id,
        actor_name=actor.display_name,
        action=action,
        status=complaint.status,
        comment=comment,
        is_internal_note=internal,
        created_at=at,
    )


class TimelineLog:
    """Query and note-taking surface over the complaint timeline."""

    __slots__ = ("_clock", "_complaints")

    def __init__(self, complaints: ComplaintRepository, clock: Callable[[], datetime]) -> None:
        self._complaints = complaints
        self._clock = clock

    async def get_timeline(self, complaint_id: str, include_internal: bool = False) -> list[TimelineEvent]:
        """Return the complaint's events, oldest first.

        Internal notes are dropped unless *include_internal* is set.
        """
        if await self._complaints.get(complaint_id) is None:
            raise NotFoundError(f"Complaint {complaint_id} not found")
        events = await self._complaints.timeline(complaint_id)
        if not include_internal:
            events = [e for e in events if not e.is_internal_note]
        # Stable sort keeps append order for identical timestamps.
        return sorted(events, key=lambda e: e.created_at)

    async def get_timeline_for(
        self,
        complaint_id: str,
        principal: Principal,
        include_internal: bool = False,
    ) -> list[TimelineEvent]:
        """Role-aware timeline read.

        Officers and admins may see internal notes.  The submitter may
        read their own complaint's public timeline; anyone else is denied.
        """
        complaint = await self._complaints.get(complaint_id)
        if complaint is None:
            raise NotFoundError(f"Complaint {complaint_id} not found")
        if principal.is_staff:
            return await self.get_timeline(complaint_id, include_internal)
        if not complaint.is_submitted_by(principal.id):
            raise AuthorizationError("You can only view the timeline of your own complaints")
        return await self.get_timeline(complaint_id, include_internal=False)

    async def add_note(
        self,
        complaint_id: str,
        text: str,
        actor: Principal,
        *,
        internal: bool = True,
        expected_version: int | None = None,
    ) -> Complaint:
        """Append a note.  Allowed on terminal complaints as well."""
        if not actor.is_staff:
            raise AuthorizationError("Only officers and admins can add notes")
        text = text.strip()
        if not text:
            raise ValidationError("Note text is required")
        if len(text) > _MAX_NOTE_LENGTH:
            raise ValidationError(f"Note text exceeds {_MAX_NOTE_LENGTH} characters")

        complaint = await self._complaints.get(complaint_id)
        if complaint is None:
            raise NotFoundError(f"Complaint {complaint_id} not found")
        read_version = complaint.version if expected_version is None else expected_version

        now = self._clock()
        notes = list(complaint.internal_notes)
        if internal:
            notes.append(InternalNote(author_id=actor.id, text=text, created_at=now))
        updated = complaint.model_copy(update={"internal_notes": notes, "updated_at": now})
        event = build_event(updated, actor, "NOTE_ADDED", text, internal=internal, at=now)
        saved = await self._complaints.commit(updated, read_version, [event])

        logger.info("timeline.note_added", complaint_id=complaint_id, actor=actor.id, internal=internal)
        return saved

    async def internal_notes(self, complaint_id: str, principal: Principal) -> list[TimelineEvent]:
        """All timeline entries visible to staff, internal ones included."""
        if not principal.is_staff:
            raise AuthorizationError("Only officers and admins can read internal notes")
        return await self.get_timeline(complaint_id, include_internal=True)
