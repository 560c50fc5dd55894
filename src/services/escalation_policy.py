"""Escalation policy engine.

Decides, for a single complaint at a given instant, whether it should be
auto-escalated and at what priority.  Everything here is a pure function
of ``(complaint, config, now)``: nothing is read from storage and nothing
is written, so the scheduler, the candidate preview endpoint and the
dashboard all see the same answer for the same inputs.

Rules (first match wins)
------------------------
1. RESOLVED, CLOSED, COMPLETED or already-escalated complaints are never
   candidates.
2. ``deadline < now``                               -> OVERDUE_DEADLINE
3. unassigned for longer than the unassigned limit  -> UNASSIGNED_TIMEOUT
4. older than the limit for its urgency             -> URGENCY_TIMEOUT
5. assigned with no status change for too long      -> STUCK_IN_PROGRESS
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timedelta

from src.models.complaint import Complaint
from src.models.enums import (
    AttentionLevel,
    ComplaintStatus,
    EscalationPriority,
    EscalationReason,
    Urgency,
)
from src.models.escalation import EscalationConfig, EscalationDecision, EscalationOutlook

_HOUR = timedelta(hours=1)


def _hours(delta: timedelta) -> float:
    return delta / _HOUR


def _is_exempt(complaint: Complaint) -> bool:
    return complaint.is_terminal or complaint.is_escalated or complaint.status == ComplaintStatus.COMPLETED


def overdue_priority(overdue_hours: float, config: EscalationConfig) -> EscalationPriority:
    """Priority for a complaint whose deadline passed *overdue_hours* ago."""
    if overdue_hours > 2 * config.overdue_threshold_hours:
        return EscalationPriority.CRITICAL
    if overdue_hours >= config.overdue_threshold_hours:
        return EscalationPriority.URGENT
    return EscalationPriority.HIGH


# ---------------------------------------------------------------------------
# Decision
# ---------------------------------------------------------------------------


def evaluate(complaint: Complaint, config: EscalationConfig, now: datetime) -> EscalationDecision:
    """Return the escalation decision for *complaint* at *now*.

    Parameters
    ----------
    complaint:
        Snapshot to evaluate.  Never modified.
    config:
        Thresholds to evaluate against.
    now:
        Evaluation instant (timezone-aware UTC).
    """
    if _is_exempt(complaint):
        return EscalationDecision.not_candidate()

    if complaint.deadline is not None and complaint.deadline < now:
        overdue = _hours(now - complaint.deadline)
        return EscalationDecision(
            is_candidate=True,
            reason_code=EscalationReason.OVERDUE_DEADLINE,
            suggested_priority=overdue_priority(overdue, config),
            detail=f"Deadline passed {overdue:.1f} hours ago",
        )

    age = _hours(now - complaint.created_at)

    if complaint.assigned_to_id is None and age > config.unassigned_threshold_hours:
        return EscalationDecision(
            is_candidate=True,
            reason_code=EscalationReason.UNASSIGNED_TIMEOUT,
            suggested_priority=EscalationPriority.HIGH,
            detail=(
                f"Unassigned for {age:.1f} hours "
                f"(limit {config.unassigned_threshold_hours} hours)"
            ),
        )

    urgency_limit = config.urgency_threshold_hours(complaint.urgency)
    if age > urgency_limit:
        priority = EscalationPriority.URGENT if complaint.urgency == Urgency.HIGH else EscalationPriority.HIGH
        return EscalationDecision(
            is_candidate=True,
            reason_code=EscalationReason.URGENCY_TIMEOUT,
            suggested_priority=priority,
            detail=(
                f"{complaint.urgency.value} urgency complaint open for {age:.1f} hours "
                f"(limit {urgency_limit} hours)"
            ),
        )

    if complaint.assigned_to_id is not None:
        idle = _hours(now - complaint.status_changed_at)
        if idle > config.stuck_threshold_hours:
            return EscalationDecision(
                is_candidate=True,
                reason_code=EscalationReason.STUCK_IN_PROGRESS,
                suggested_priority=EscalationPriority.HIGH,
                detail=(
                    f"No status change for {idle:.1f} hours while {complaint.status.value} "
                    f"(limit {config.stuck_threshold_hours} hours)"
                ),
            )

    return EscalationDecision.not_candidate()


def find_candidates(
    complaints: Iterable[Complaint],
    config: EscalationConfig,
    now: datetime,
) -> list[tuple[Complaint, EscalationDecision]]:
    """Evaluate every complaint and keep the candidates, in input order."""
    pairs = ((c, evaluate(c, config, now)) for c in complaints)
    return [(c, d) for c, d in pairs if d.is_candidate]


# ---------------------------------------------------------------------------
# Display hint
# ---------------------------------------------------------------------------


def escalation_outlook(complaint: Complaint, config: EscalationConfig, now: datetime) -> EscalationOutlook:
    """How close *complaint* is to its nearest escalation threshold.

    ``BREACHED`` means :func:`evaluate` would flag it right now.
    ``WARNING`` means at least ``config.warning_ratio`` of some threshold
    window has elapsed.  Exempt complaints are always ``OK``.
    """
    if _is_exempt(complaint):
        return EscalationOutlook(level=AttentionLevel.OK)

    decision = evaluate(complaint, config, now)
    if decision.is_candidate:
        return EscalationOutlook(level=AttentionLevel.BREACHED, reason_code=decision.reason_code, hours_remaining=0.0)

    age = _hours(now - complaint.created_at)
    # (reason, window length in hours, hours elapsed in that window)
    windows: list[tuple[EscalationReason, float, float]] = []
    if complaint.deadline is not None:
        window = _hours(complaint.deadline - complaint.created_at)
        windows.append((EscalationReason.OVERDUE_DEADLINE, window, age))
    if complaint.assigned_to_id is None:
        windows.append((EscalationReason.UNASSIGNED_TIMEOUT, config.unassigned_threshold_hours, age))
    windows.append((EscalationReason.URGENCY_TIMEOUT, config.urgency_threshold_hours(complaint.urgency), age))
    if complaint.assigned_to_id is not None:
        idle = _hours(now - complaint.status_changed_at)
        windows.append((EscalationReason.STUCK_IN_PROGRESS, config.stuck_threshold_hours, idle))

    reason, window, elapsed = min(windows, key=lambda w: w[1] - w[2])
    remaining = max(window - elapsed, 0.0)
    level = AttentionLevel.OK
    if window > 0 and elapsed >= config.warning_ratio * window:
        level = AttentionLevel.WARNING
    return EscalationOutlook(level=level, reason_code=reason, hours_remaining=remaining)
