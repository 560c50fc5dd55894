"""Notification dispatcher for complaint lifecycle events.

Every committed lifecycle transition yields one :class:`LifecycleEvent`.
The dispatcher turns it into one in-app :class:`Notification` row per
interested recipient:

* ``assigned``         -- new assignee, previous assignee on reassignment,
  and the submitter.
* ``escalated``        -- the escalation target (or every admin for a
  general escalation), the current assignee, and the submitter.
* ``status_changed``   -- the assignee, the previous assignee when the
  complaint was taken away from them, and the submitter.
* ``deadline_updated`` -- the assignee.

The submitter is only told about non-internal events on non-anonymous
complaints.  A recipient who qualifies twice gets a single row.

Delivery is a polling contract: clients pull their unread count and
pages of notifications.  An optional :class:`NotificationTransport`
(e.g. :class:`WebhookNotificationTransport`) is told about new rows on a
best-effort basis.  Dispatch runs after the transition has been
committed, so no failure here can roll a transition back.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Final, Protocol

import httpx
import orjson
import structlog
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.models.enums import LifecycleEventKind, NotificationType, Role
from src.models.notification import Notification, NotificationPage
from src.models.user import Principal
from src.services.errors import (
    AuthorizationError,
    ExternalCollaboratorError,
    NotFoundError,
    ValidationError,
)
from src.services.lifecycle import LifecycleEvent
from src.services.repository import NotificationRepository, UserRepository

logger = structlog.get_logger(__name__)

_MAX_PAGE_SIZE: Final[int] = 100


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

# key -> (type, title, message).  Messages are formatted with ``ref``,
# ``category``, ``urgency``, ``status``, ``priority``, ``deadline``,
# ``comment``.
_TEMPLATES: Final[dict[str, tuple[NotificationType, str, str]]] = {
    "assigned.assignee": (
        NotificationType.COMPLAINT_ASSIGNED,
        "New Complaint Assigned to You",
        "You have been assigned complaint #{ref}. Category: {category}, Urgency: {urgency}. "
        "Please review and take appropriate action.",
    ),
    "assigned.previous": (
        NotificationType.COMPLAINT_STATUS_UPDATE,
        "Complaint Reassigned",
        "Complaint #{ref} has been reassigned to another officer.",
    ),
    "assigned.submitter": (
        NotificationType.COMPLAINT_STATUS_UPDATE,
        "Your Complaint Has Been Assigned",
        "Your complaint #{ref} has been assigned to an officer and is being reviewed. "
        "You will be notified of any updates.",
    ),
    "escalated.target": (
        NotificationType.ESCALATION_ALERT,
        "Complaint Escalated to You",
        "Complaint #{ref} has been escalated to you with {priority} priority. "
        "Category: {category}, Urgency: {urgency}.",
    ),
    "escalated.admin": (
        NotificationType.ESCALATION_ALERT,
        "Complaint Escalated - Action Required",
        "Complaint #{ref} has been escalated with {priority} priority and requires immediate attention. "
        "Category: {category}, Urgency: {urgency}.",
    ),
    "escalated.assignee": (
        NotificationType.COMPLAINT_ESCALATED,
        "Complaint Under Your Review Has Been Escalated",
        "Complaint #{ref} that is assigned to you has been escalated. "
        "Please coordinate with senior management for resolution.",
    ),
    "escalated.submitter": (
        NotificationType.COMPLAINT_ESCALATED,
        "Your Complaint Has Been Escalated",
        "Your complaint #{ref} has been escalated to a higher authority. "
        "A senior officer will review it shortly.",
    ),
    "status.assignee": (
        NotificationType.COMPLAINT_STATUS_UPDATE,
        "Complaint Status Updated",
        "Complaint #{ref} is now {status}. {comment}",
    ),
    "status.previous": (
        NotificationType.COMPLAINT_STATUS_UPDATE,
        "Complaint Unassigned",
        "Complaint #{ref} is no longer assigned to you.",
    ),
    "status.submitter": (
        NotificationType.COMPLAINT_STATUS_UPDATE,
        "Your Complaint Has Been Updated",
        "Your complaint #{ref} is now {status}.",
    ),
    "deadline.assignee": (
        NotificationType.COMPLAINT_DEADLINE_UPDATE,
        "Complaint Deadline Updated",
        "The deadline for complaint #{ref} is now {deadline}.",
    ),
}


def _render(key: str, event: LifecycleEvent) -> tuple[NotificationType, str, str]:
    kind, title, template = _TEMPLATES[key]
    complaint = event.complaint
    message = template.format(
        ref=complaint.id[:8],
        category=complaint.category.value,
        urgency=complaint.urgency.value,
        status=complaint.status.value,
        priority=complaint.escalation_priority.value if complaint.escalation_priority else "HIGH",
        deadline=complaint.deadline.strftime("%Y-%m-%d %H:%M UTC") if complaint.deadline else "not set",
        comment=event.comment,
    )
    return kind, title, message.strip()


# ---------------------------------------------------------------------------
# Outbound transport
# ---------------------------------------------------------------------------


class NotificationTransport(Protocol):
    """Pushes freshly stored notifications to an external channel."""

    async def deliver(self, notifications: Sequence[Notification]) -> None: ...

    async def close(self) -> None: ...


class WebhookNotificationTransport:
    """POST new notifications as a JSON batch to a webhook URL.

    Parameters
    ----------
    url:
        Endpoint that receives ``{"notifications": [...]}``.
    timeout:
        Per-request timeout in seconds.
    client:
        Pre-built client (tests pass one with a mock transport).
    """

    __slots__ = ("_client", "_url")

    def __init__(self, url: str, timeout: float = 5.0, client: httpx.AsyncClient | None = None) -> None:
        self._url = url
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"User-Agent": "ResolveDesk/1.0 (notification webhook)"},
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def deliver(self, notifications: Sequence[Notification]) -> None:
        if not notifications:
            return
        payload = orjson.dumps({"notifications": [n.model_dump(mode="json") for n in notifications]})
        try:
            await self._post(payload)
        except httpx.HTTPError as exc:
            raise ExternalCollaboratorError(f"Notification webhook failed: {exc}") from exc

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def _post(self, payload: bytes) -> None:
        response = await self._client.post(
            self._url,
            content=payload,
            headers={"Content-Type": "application/json"},
        )
        response.raise_for_status()


# ---------------------------------------------------------------------------
# NotificationDispatcher
# ---------------------------------------------------------------------------


class NotificationDispatcher:
    """Fans lifecycle events out to recipients and serves the poll API.

    Parameters
    ----------
    notifications:
        Store for notification rows.
    users:
        Directory used to find admins for general escalations and
        announcements.
    transport:
        Optional outbound channel; failures are logged and swallowed.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    __slots__ = ("_clock", "_notifications", "_queue", "_transport", "_users", "_worker")

    def __init__(
        self,
        notifications: NotificationRepository,
        users: UserRepository,
        transport: NotificationTransport | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._notifications = notifications
        self._users = users
        self._transport = transport
        self._clock = clock or (lambda: datetime.now(UTC))
        self._queue: asyncio.Queue[LifecycleEvent] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Event intake
    # ------------------------------------------------------------------

    async def enqueue(self, event: LifecycleEvent) -> None:
        """Hand *event* to the worker, or dispatch inline if none is running."""
        if self.is_running:
            self._queue.put_nowait(event)
            return
        await self.dispatch(event)

    async def dispatch(self, event: LifecycleEvent) -> list[Notification]:
        """Create one notification per recipient of *event*."""
        now = self._clock()
        planned = await self._plan(event)
        rows = [
            Notification(
                type=kind,
                recipient_id=recipient_id,
                complaint_id=event.complaint.id,
                title=title,
                message=message,
                created_at=now,
            )
            for recipient_id, (kind, title, message) in planned.items()
        ]
        stored = await self._notifications.add_many(rows)
        logger.info(
            "notifications.dispatched",
            complaint_id=event.complaint.id,
            kind=event.kind.value,
            recipients=len(stored),
        )
        await self._deliver(stored)
        return stored

    async def _plan(self, event: LifecycleEvent) -> dict[str, tuple[NotificationType, str, str]]:
        """Recipient id -> rendered notification, first match per recipient wins."""
        complaint = event.complaint
        planned: dict[str, tuple[NotificationType, str, str]] = {}

        def add(recipient_id: str | None, key: str) -> None:
            if recipient_id and recipient_id not in planned:
                planned[recipient_id] = _render(key, event)

        previous = event.previous_assignee_id
        moved_away = previous is not None and previous != complaint.assigned_to_id

        if event.kind == LifecycleEventKind.ASSIGNED:
            add(complaint.assigned_to_id, "assigned.assignee")
            if moved_away:
                add(previous, "assigned.previous")
            prefix = "assigned"
        elif event.kind == LifecycleEventKind.ESCALATED:
            if complaint.escalated_to_id:
                add(complaint.escalated_to_id, "escalated.target")
            else:
                for admin in await self._users.with_role(Role.ADMIN):
                    add(admin.id, "escalated.admin")
            add(complaint.assigned_to_id, "escalated.assignee")
            prefix = "escalated"
        elif event.kind == LifecycleEventKind.DEADLINE_UPDATED:
            add(complaint.assigned_to_id, "deadline.assignee")
            prefix = None
        else:
            add(complaint.assigned_to_id, "status.assignee")
            if moved_away:
                add(previous, "status.previous")
            prefix = "status"

        if prefix and not event.internal and not complaint.anonymous:
            add(complaint.submitter_id, f"{prefix}.submitter")
        return planned

    async def _deliver(self, notifications: list[Notification]) -> None:
        if self._transport is None or not notifications:
            return
        try:
            await self._transport.deliver(notifications)
        except ExternalCollaboratorError as exc:
            logger.warning("notifications.transport_failed", error=exc.message, count=len(notifications))
        except Exception:
            logger.error("notifications.transport_error", count=len(notifications), exc_info=True)

    async def announce(self, title: str, message: str, actor: Principal) -> int:
        """Send a SYSTEM_ANNOUNCEMENT to every known user.  Admin only."""
        if not actor.is_admin:
            raise AuthorizationError("Only admins can send announcements")
        title, message = title.strip(), message.strip()
        if not title or not message:
            raise ValidationError("Announcement title and message are required")
        now = self._clock()
        rows = [
            Notification(
                type=NotificationType.SYSTEM_ANNOUNCEMENT,
                recipient_id=user.id,
                title=title,
                message=message,
                created_at=now,
            )
            for user in await self._users.list()
        ]
        stored = await self._notifications.add_many(rows)
        logger.info("notifications.announced", by=actor.id, recipients=len(stored))
        await self._deliver(stored)
        return len(stored)

    # ------------------------------------------------------------------
    # Background worker
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        if self.is_running:
            return
        self._worker = asyncio.create_task(self._run_worker(), name="notification-dispatcher")
        logger.info("notifications.worker_started")

    async def drain(self) -> None:
        """Wait until every queued event has been dispatched."""
        await self._queue.join()

    async def stop(self, timeout: float = 10.0) -> None:
        """Flush the queue (bounded by *timeout*) and stop the worker."""
        worker, self._worker = self._worker, None
        if worker is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except TimeoutError:
            logger.warning("notifications.drain_timeout", pending=self._queue.qsize())
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            pass
        logger.info("notifications.worker_stopped")

    async def _run_worker(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.dispatch(event)
            except Exception:
                logger.error(
                    "notifications.dispatch_failed",
                    complaint_id=event.complaint.id,
                    kind=event.kind.value,
                    exc_info=True,
                )
            finally:
                self._queue.task_done()

    # ------------------------------------------------------------------
    # Poll API (always scoped to the caller)
    # ------------------------------------------------------------------

    async def list_for(self, principal: Principal, page: int = 0, size: int = 20) -> NotificationPage:
        if page < 0:
            raise ValidationError("page must be >= 0")
        if not 1 <= size <= _MAX_PAGE_SIZE:
            raise ValidationError(f"size must be between 1 and {_MAX_PAGE_SIZE}")
        items, total = await self._notifications.page_for(principal.id, page * size, size)
        return NotificationPage(items=items, page=page, size=size, total=total)

    async def unread_count(self, principal: Principal) -> int:
        return await self._notifications.unread_count(principal.id)

    async def mark_read(self, notification_id: str, principal: Principal) -> Notification:
        notification = await self._notifications.get(notification_id)
        if notification is None:
            raise NotFoundError(f"Notification {notification_id} not found")
        if notification.recipient_id != principal.id:
            logger.warning(
                "notifications.foreign_mark_read",
                notification_id=notification_id,
                user=principal.id,
            )
            raise AuthorizationError("You can only mark your own notifications as read")
        return await self._notifications.mark_read(notification_id, self._clock())

    async def mark_all_read(self, principal: Principal) -> int:
        changed = await self._notifications.mark_all_read(principal.id, self._clock())
        logger.info("notifications.marked_all_read", user=principal.id, count=changed)
        return changed
