"""ResolveDesk service layer -- lifecycle, assignment, escalation, notifications.

Everything here depends only on the repository protocols in
:mod:`src.services.repository`, so the in-memory stores can be swapped
for a database-backed implementation without touching the services.
"""

from __future__ import annotations

from src.services.assignment import AssignmentManager
from src.services.complaints import ComplaintService
from src.services.escalation_policy import escalation_outlook, evaluate, find_candidates
from src.services.lifecycle import LifecycleEvent, LifecycleStateMachine, apply_transition
from src.services.notifications import NotificationDispatcher, WebhookNotificationTransport
from src.services.repository import (
    InMemoryComplaintRepository,
    InMemoryNotificationRepository,
    InMemoryUserRepository,
)
from src.services.scheduler import EscalationScheduler
from src.services.timeline import TimelineLog

__all__ = [
    "AssignmentManager",
    "ComplaintService",
    "EscalationScheduler",
    "InMemoryComplaintRepository",
    "InMemoryNotificationRepository",
    "InMemoryUserRepository",
    "LifecycleEvent",
    "LifecycleStateMachine",
    "NotificationDispatcher",
    "TimelineLog",
    "WebhookNotificationTransport",
    "apply_transition",
    "escalation_outlook",
    "evaluate",
    "find_candidates",
]
