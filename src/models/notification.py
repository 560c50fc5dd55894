"""In-app notification records consumed by polling clients."""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

from pydantic import BaseModel, Field, computed_field

from src.models.enums import NotificationType


class Notification(BaseModel):
    """A single notification addressed to one recipient.

    Everything except ``read`` / ``read_at`` is fixed at creation.
    """

    id: str = Field(default_factory=lambda: uuid4().hex)
    type: NotificationType
    recipient_id: str
    complaint_id: str | None = None
    title: str
    message: str
    read: bool = False
    read_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class NotificationPage(BaseModel):
    """One page of a recipient's notifications, newest first."""

    items: list[Notification]
    page: int
    size: int
    total: int

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_pages(self) -> int:
        if self.size <= 0:
            return 0
        return (self.total + self.size - 1) // self.size
