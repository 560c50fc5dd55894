from src.models.complaint import SYSTEM_ACTOR, Complaint, InternalNote, TimelineEvent
from src.models.enums import (
    AttentionLevel,
    ComplaintCategory,
    ComplaintStatus,
    EscalationPriority,
    EscalationReason,
    EscalationSource,
    LifecycleEventKind,
    NotificationType,
    Role,
    SweepTrigger,
    Urgency,
)
from src.models.escalation import (
    EscalationConfig,
    EscalationDecision,
    EscalationOutlook,
    EscalationStats,
    SweepError,
    SweepResult,
)
from src.models.notification import Notification, NotificationPage
from src.models.user import SYSTEM_PRINCIPAL, Principal, User

__all__ = [
    "SYSTEM_ACTOR",
    "SYSTEM_PRINCIPAL",
    "AttentionLevel",
    "Complaint",
    "ComplaintCategory",
    "ComplaintStatus",
    "EscalationConfig",
    "EscalationDecision",
    "EscalationOutlook",
    "EscalationPriority",
    "EscalationReason",
    "EscalationSource",
    "EscalationStats",
    "InternalNote",
    "LifecycleEventKind",
    "Notification",
    "NotificationPage",
    "NotificationType",
    "Principal",
    "Role",
    "SweepError",
    "SweepResult",
    "SweepTrigger",
    "TimelineEvent",
    "Urgency",
    "User",
]
