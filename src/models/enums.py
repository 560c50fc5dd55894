from __future__ import annotations

from enum import StrEnum


class ComplaintStatus(StrEnum):
    __slots__ = ()

    NEW = "NEW"
    UNDER_REVIEW = "UNDER_REVIEW"
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    ESCALATED = "ESCALATED"
    RESOLVED = "RESOLVED"
    CLOSED = "CLOSED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: frozenset[ComplaintStatus] = frozenset({ComplaintStatus.RESOLVED, ComplaintStatus.CLOSED})


class ComplaintCategory(StrEnum):
    __slots__ = ()

    TECHNICAL = "TECHNICAL"
    BILLING = "BILLING"
    SERVICE_QUALITY = "SERVICE_QUALITY"
    DELIVERY = "DELIVERY"
    PRODUCT_QUALITY = "PRODUCT_QUALITY"
    CUSTOMER_SERVICE = "CUSTOMER_SERVICE"
    WEBSITE = "WEBSITE"
    MOBILE_APP = "MOBILE_APP"
    SECURITY = "SECURITY"
    FEEDBACK = "FEEDBACK"
    OTHER = "OTHER"


class Urgency(StrEnum):
    __slots__ = ()

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class EscalationPriority(StrEnum):
    """Ordered from least to most severe."""

    __slots__ = ()

    HIGH = "HIGH"
    URGENT = "URGENT"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK: dict[EscalationPriority, int] = {
    EscalationPriority.HIGH: 0,
    EscalationPriority.URGENT: 1,
    EscalationPriority.CRITICAL: 2,
}


class EscalationReason(StrEnum):
    __slots__ = ()

    OVERDUE_DEADLINE = "OVERDUE_DEADLINE"
    UNASSIGNED_TIMEOUT = "UNASSIGNED_TIMEOUT"
    URGENCY_TIMEOUT = "URGENCY_TIMEOUT"
    STUCK_IN_PROGRESS = "STUCK_IN_PROGRESS"
    MANUAL = "MANUAL"


class EscalationSource(StrEnum):
    __slots__ = ()

    AUTOMATED = "AUTOMATED"
    MANUAL = "MANUAL"


class Role(StrEnum):
    __slots__ = ()

    USER = "USER"
    OFFICER = "OFFICER"
    ADMIN = "ADMIN"


class NotificationType(StrEnum):
    __slots__ = ()

    COMPLAINT_ASSIGNED = "COMPLAINT_ASSIGNED"
    COMPLAINT_ESCALATED = "COMPLAINT_ESCALATED"
    COMPLAINT_STATUS_UPDATE = "COMPLAINT_STATUS_UPDATE"
    COMPLAINT_DEADLINE_UPDATE = "COMPLAINT_DEADLINE_UPDATE"
    ESCALATION_ALERT = "ESCALATION_ALERT"
    SYSTEM_ANNOUNCEMENT = "SYSTEM_ANNOUNCEMENT"


class LifecycleEventKind(StrEnum):
    """Notification-worthy outcome of a lifecycle transition."""

    __slots__ = ()

    ASSIGNED = "assigned"
    ESCALATED = "escalated"
    STATUS_CHANGED = "status_changed"
    DEADLINE_UPDATED = "deadline_updated"


class SweepTrigger(StrEnum):
    __slots__ = ()

    SCHEDULED = "SCHEDULED"
    MANUAL = "MANUAL"


class AttentionLevel(StrEnum):
    """Display hint for how close a complaint is to auto-escalation."""

    __slots__ = ()

    OK = "OK"
    WARNING = "WARNING"
    BREACHED = "BREACHED"
