"""Tests for the escalation policy engine.

All checks are pure: a complaint snapshot, a config and a fixed instant.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import NOW, make_complaint
from src.models.enums import (
    AttentionLevel,
    ComplaintStatus,
    EscalationPriority,
    EscalationReason,
    Urgency,
)
from src.models.escalation import EscalationConfig
from src.services.escalation_policy import (
    escalation_outlook,
    evaluate,
    find_candidates,
    overdue_priority,
)


def _hours_ago(hours: float):
    return NOW - timedelta(hours=hours)


# ---------------------------------------------------------------------------
# evaluate
# ---------------------------------------------------------------------------


class TestEvaluate:
    def test_high_urgency_timeout(self) -> None:
        config = EscalationConfig(high_urgency_threshold_hours=18)
        complaint = make_complaint(urgency=Urgency.HIGH, created_at=_hours_ago(20))

        decision = evaluate(complaint, config, NOW)

        assert decision.is_candidate
        assert decision.reason_code == EscalationReason.URGENCY_TIMEOUT
        assert decision.suggested_priority == EscalationPriority.URGENT
        assert "HIGH urgency" in decision.detail

    def test_overdue_deadline_in_progress(self, config) -> None:
        complaint = make_complaint(
            created_at=_hours_ago(10),
            status=ComplaintStatus.IN_PROGRESS,
            assigned_to_id="officer1",
            deadline=_hours_ago(1),
        )

        decision = evaluate(complaint, config, NOW)

        assert decision.is_candidate
        assert decision.reason_code == EscalationReason.OVERDUE_DEADLINE
        assert decision.suggested_priority.rank >= EscalationPriority.HIGH.rank

    def test_deadline_exactly_now_is_not_overdue(self, config) -> None:
        complaint = make_complaint(
            created_at=_hours_ago(1),
            status=ComplaintStatus.ASSIGNED,
            assigned_to_id="officer1",
            deadline=NOW,
        )
        assert not evaluate(complaint, config, NOW).is_candidate

    def test_overdue_wins_over_unassigned(self, config) -> None:
        complaint = make_complaint(created_at=_hours_ago(100), deadline=_hours_ago(2))
        assert evaluate(complaint, config, NOW).reason_code == EscalationReason.OVERDUE_DEADLINE

    def test_unassigned_timeout(self) -> None:
        config = EscalationConfig(unassigned_threshold_hours=48, low_urgency_threshold_hours=500)
        complaint = make_complaint(urgency=Urgency.LOW, created_at=_hours_ago(49))

        decision = evaluate(complaint, config, NOW)

        assert decision.reason_code == EscalationReason.UNASSIGNED_TIMEOUT
        assert decision.suggested_priority == EscalationPriority.HIGH

    def test_medium_urgency_timeout_priority_is_high(self) -> None:
        config = EscalationConfig(unassigned_threshold_hours=500, medium_urgency_threshold_hours=72)
        complaint = make_complaint(urgency=Urgency.MEDIUM, created_at=_hours_ago(73))

        decision = evaluate(complaint, config, NOW)

        assert decision.reason_code == EscalationReason.URGENCY_TIMEOUT
        assert decision.suggested_priority == EscalationPriority.HIGH

    def test_stuck_uses_last_status_change(self) -> None:
        config = EscalationConfig(stuck_threshold_hours=72, low_urgency_threshold_hours=1000)
        complaint = make_complaint(
            urgency=Urgency.LOW,
            created_at=_hours_ago(200),
            status=ComplaintStatus.IN_PROGRESS,
            assigned_to_id="officer1",
            status_changed_at=_hours_ago(80),
        )

        decision = evaluate(complaint, config, NOW)

        assert decision.reason_code == EscalationReason.STUCK_IN_PROGRESS
        assert decision.suggested_priority == EscalationPriority.HIGH

    def test_recent_status_change_not_stuck(self) -> None:
        config = EscalationConfig(stuck_threshold_hours=72, low_urgency_threshold_hours=1000)
        complaint = make_complaint(
            urgency=Urgency.LOW,
            created_at=_hours_ago(200),
            status=ComplaintStatus.IN_PROGRESS,
            assigned_to_id="officer1",
            status_changed_at=_hours_ago(5),
        )
        assert not evaluate(complaint, config, NOW).is_candidate

    @pytest.mark.parametrize(
        "overrides",
        [
            {"status": ComplaintStatus.RESOLVED},
            {"status": ComplaintStatus.CLOSED},
            {"status": ComplaintStatus.COMPLETED, "assigned_to_id": "officer1"},
            {"is_escalated": True, "escalated_at": NOW - timedelta(hours=1)},
        ],
    )
    def test_exempt_complaints(self, config, overrides) -> None:
        complaint = make_complaint(created_at=_hours_ago(1000), deadline=_hours_ago(500), **overrides)
        assert not evaluate(complaint, config, NOW).is_candidate

    def test_fresh_complaint_is_not_candidate(self, config) -> None:
        assert not evaluate(make_complaint(created_at=_hours_ago(1)), config, NOW).is_candidate


# ---------------------------------------------------------------------------
# Priority ladder
# ---------------------------------------------------------------------------


class TestOverduePriority:
    @pytest.mark.parametrize(
        ("hours", "expected"),
        [
            (1, EscalationPriority.HIGH),
            (23.9, EscalationPriority.HIGH),
            (24, EscalationPriority.URGENT),
            (48, EscalationPriority.URGENT),
            (48.5, EscalationPriority.CRITICAL),
        ],
    )
    def test_ladder(self, config, hours, expected) -> None:
        assert overdue_priority(hours, config) == expected

    def test_priority_ordering(self) -> None:
        ranks = [p.rank for p in (EscalationPriority.HIGH, EscalationPriority.URGENT, EscalationPriority.CRITICAL)]
        assert ranks == sorted(ranks)


# ---------------------------------------------------------------------------
# find_candidates
# ---------------------------------------------------------------------------


class TestFindCandidates:
    def test_keeps_only_candidates_in_input_order(self, config) -> None:
        overdue = make_complaint(id="a", deadline=_hours_ago(3), assigned_to_id="officer1",
                                 status=ComplaintStatus.ASSIGNED, created_at=_hours_ago(5))
        fresh = make_complaint(id="b", created_at=_hours_ago(1))
        unassigned = make_complaint(id="c", created_at=_hours_ago(60))

        pairs = find_candidates([overdue, fresh, unassigned], config, NOW)

        assert [c.id for c, _ in pairs] == ["a", "c"]
        assert all(d.is_candidate for _, d in pairs)

    def test_deterministic(self, config) -> None:
        complaints = [make_complaint(created_at=_hours_ago(h)) for h in (10, 50, 100)]
        first = find_candidates(complaints, config, NOW)
        second = find_candidates(complaints, config, NOW)
        assert [(c.id, d) for c, d in first] == [(c.id, d) for c, d in second]


# ---------------------------------------------------------------------------
# Outlook
# ---------------------------------------------------------------------------


class TestOutlook:
    def test_breached(self, config) -> None:
        complaint = make_complaint(created_at=_hours_ago(60))
        outlook = escalation_outlook(complaint, config, NOW)
        assert outlook.level == AttentionLevel.BREACHED
        assert outlook.hours_remaining == 0.0

    def test_warning_near_unassigned_limit(self) -> None:
        config = EscalationConfig(unassigned_threshold_hours=48, medium_urgency_threshold_hours=200, warning_ratio=0.75)
        complaint = make_complaint(created_at=_hours_ago(40))

        outlook = escalation_outlook(complaint, config, NOW)

        assert outlook.level == AttentionLevel.WARNING
        assert outlook.reason_code == EscalationReason.UNASSIGNED_TIMEOUT
        assert outlook.hours_remaining == pytest.approx(8.0)

    def test_ok_when_far_from_thresholds(self, config) -> None:
        outlook = escalation_outlook(make_complaint(created_at=_hours_ago(2)), config, NOW)
        assert outlook.level == AttentionLevel.OK
        assert outlook.to_dict()["level"] == "OK"

    def test_deadline_window(self) -> None:
        config = EscalationConfig(medium_urgency_threshold_hours=500, stuck_threshold_hours=500)
        complaint = make_complaint(
            created_at=_hours_ago(18),
            status=ComplaintStatus.ASSIGNED,
            assigned_to_id="officer1",
            status_changed_at=_hours_ago(18),
            deadline=NOW + timedelta(hours=2),
        )

        outlook = escalation_outlook(complaint, config, NOW)

        assert outlook.level == AttentionLevel.WARNING
        assert outlook.reason_code == EscalationReason.OVERDUE_DEADLINE
        assert outlook.hours_remaining == pytest.approx(2.0)

    def test_exempt_is_ok(self, config) -> None:
        complaint = make_complaint(created_at=_hours_ago(1000), status=ComplaintStatus.CLOSED)
        assert escalation_outlook(complaint, config, NOW).level == AttentionLevel.OK
