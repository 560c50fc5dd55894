"""Storage contracts and in-process implementations.

The lifecycle engine only depends on the :class:`ComplaintRepository`,
:class:`UserRepository` and :class:`NotificationRepository` protocols.
The in-memory implementations here are the default backing store; a
database-backed implementation only has to honour the same contract:

* reads return detached copies, so callers can never mutate stored state;
* :meth:`ComplaintRepository.commit` writes the complaint *and* its
  timeline events as one unit, and only if the stored ``version`` still
  equals the version the writer read.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Protocol, runtime_checkable

import structlog

from src.models.complaint import Complaint, TimelineEvent
from src.models.enums import Role
from src.models.notification import Notification
from src.models.user import User
from src.services.errors import ConflictError, NotFoundError

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class ComplaintRepository(Protocol):
    """Versioned complaint store with an attached append-only timeline."""

    async def create(self, complaint: Complaint, events: Iterable[TimelineEvent] = ()) -> Complaint: ...

    async def get(self, complaint_id: str) -> Complaint | None: ...

    async def list(self, predicate: Callable[[Complaint], bool] | None = None) -> list[Complaint]: ...

    async def commit(
        self,
        complaint: Complaint,
        expected_version: int,
        events: Iterable[TimelineEvent] = (),
    ) -> Complaint: ...

    async def timeline(self, complaint_id: str) -> list[TimelineEvent]: ...


@runtime_checkable
class UserRepository(Protocol):
    async def get(self, user_id: str) -> User | None: ...

    async def upsert(self, user: User) -> User: ...

    async def list(self) -> list[User]: ...

    async def with_role(self, *roles: Role) -> list[User]: ...


@runtime_checkable
class NotificationRepository(Protocol):
    async def add_many(self, notifications: Iterable[Notification]) -> list[Notification]: ...

    async def get(self, notification_id: str) -> Notification | None: ...

    async def page_for(self, recipient_id: str, offset: int, limit: int) -> tuple[list[Notification], int]: ...

    async def unread_count(self, recipient_id: str) -> int: ...

    async def mark_read(self, notification_id: str, read_at: datetime) -> Notification: ...

    async def mark_all_read(self, recipient_id: str, read_at: datetime) -> int: ...


# ---------------------------------------------------------------------------
# In-memory complaint repository
# ---------------------------------------------------------------------------


class InMemoryComplaintRepository:
    """Dict-backed complaint store guarded by a single :class:`asyncio.Lock`.

    The lock only covers the compare-and-set inside :meth:`commit` and
    :meth:`create`; reads take a snapshot without blocking writers for
    longer than a dict lookup.
    """

    __slots__ = ("_complaints", "_lock", "_timeline")

    def __init__(self) -> None:
        self._complaints: dict[str, Complaint] = {}
        self._timeline: dict[str, list[TimelineEvent]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def create(self, complaint: Complaint, events: Iterable[TimelineEvent] = ()) -> Complaint:
        async with self._lock:
            if complaint.id in self._complaints:
                raise ConflictError(f"Complaint {complaint.id} already exists")
            stored = complaint.model_copy(deep=True, update={"version": 1})
            self._complaints[stored.id] = stored
            self._timeline[stored.id].extend(events)
        logger.debug("repository.complaint_created", complaint_id=stored.id)
        return stored.model_copy(deep=True)

    async def get(self, complaint_id: str) -> Complaint | None:
        stored = self._complaints.get(complaint_id)
        return stored.model_copy(deep=True) if stored is not None else None

    async def list(self, predicate: Callable[[Complaint], bool] | None = None) -> list[Complaint]:
        snapshot = list(self._complaints.values())
        return [c.model_copy(deep=True) for c in snapshot if predicate is None or predicate(c)]

    async def commit(
        self,
        complaint: Complaint,
        expected_version: int,
        events: Iterable[TimelineEvent] = (),
    ) -> Complaint:
        events = list(events)
        async with self._lock:
            current = self._complaints.get(complaint.id)
            if current is None:
                raise NotFoundError(f"Complaint {complaint.id} not found")
            if current.version != expected_version:
                logger.info(
                    "repository.version_conflict",
                    complaint_id=complaint.id,
                    expected=expected_version,
                    actual=current.version,
                )
                raise ConflictError(
                    f"Complaint {complaint.id} was modified concurrently "
                    f"(expected version {expected_version}, found {current.version})"
                )
            stored = complaint.model_copy(deep=True, update={"version": expected_version + 1})
            self._complaints[stored.id] = stored
            self._timeline[stored.id].extend(events)
        return stored.model_copy(deep=True)

    async def timeline(self, complaint_id: str) -> list[TimelineEvent]:
        return list(self._timeline.get(complaint_id, ()))

    @property
    def count(self) -> int:
        return len(self._complaints)


# ---------------------------------------------------------------------------
# In-memory user repository
# ---------------------------------------------------------------------------


class InMemoryUserRepository:
    __slots__ = ("_users",)

    def __init__(self, users: Iterable[User] = ()) -> None:
        self._users: dict[str, User] = {u.id: u for u in users}

    async def get(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    async def upsert(self, user: User) -> User:
        existing = self._users.get(user.id)
        if existing is not None:
            # Keep directory fields the caller did not supply.
            user = user.model_copy(
                update={
                    "full_name": user.full_name or existing.full_name,
                    "email": user.email or existing.email,
                }
            )
        self._users[user.id] = user
        return user

    async def list(self) -> list[User]:
        return list(self._users.values())

    async def with_role(self, *roles: Role) -> list[User]:
        wanted = set(roles)
        return [u for u in self._users.values() if wanted & set(u.roles)]


# ---------------------------------------------------------------------------
# In-memory notification repository
# ---------------------------------------------------------------------------


class InMemoryNotificationRepository:
    __slots__ = ("_by_recipient", "_lock", "_notifications")

    def __init__(self) -> None:
        self._notifications: dict[str, Notification] = {}
        self._by_recipient: dict[str, list[str]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def add_many(self, notifications: Iterable[Notification]) -> list[Notification]:
        added: list[Notification] = []
        async with self._lock:
            for n in notifications:
                self._notifications[n.id] = n
                self._by_recipient[n.recipient_id].append(n.id)
                added.append(n)
        return added

    async def get(self, notification_id: str) -> Notification | None:
        return self._notifications.get(notification_id)

    async def page_for(self, recipient_id: str, offset: int, limit: int) -> tuple[list[Notification], int]:
        items = [self._notifications[i] for i in self._by_recipient.get(recipient_id, ())]
        items.sort(key=lambda n: n.created_at, reverse=True)
        return items[offset : offset + limit], len(items)

    async def unread_count(self, recipient_id: str) -> int:
        return sum(1 for i in self._by_recipient.get(recipient_id, ()) if not self._notifications[i].read)

    async def mark_read(self, notification_id: str, read_at: datetime) -> Notification:
        async with self._lock:
            current = self._notifications.get(notification_id)
            if current is None:
                raise NotFoundError(f"Notification {notification_id} not found")
            if current.read:
                return current
            updated = current.model_copy(update={"read": True, "read_at": read_at})
            self._notifications[notification_id] = updated
        return updated

    async def mark_all_read(self, recipient_id: str, read_at: datetime) -> int:
        changed = 0
        async with self._lock:
            for i in self._by_recipient.get(recipient_id, ()):
                n = self._notifications[i]
                if not n.read:
                    self._notifications[i] = n.model_copy(update={"read": True, "read_at": read_at})
                    changed += 1
        return changed
