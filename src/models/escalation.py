"""Escalation configuration, policy decisions, and sweep reports."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from src.models.enums import (
    AttentionLevel,
    EscalationPriority,
    EscalationReason,
    SweepTrigger,
    Urgency,
)


class EscalationConfig(BaseModel):
    """Thresholds and knobs for the escalation policy and scheduler.

    Immutable: a hot reload replaces the whole value rather than editing
    it in place, so an in-flight sweep always sees one consistent set of
    thresholds.
    """

    model_config = {"frozen": True}

    enabled: bool = True
    unassigned_threshold_hours: int = Field(default=48, ge=1)
    overdue_threshold_hours: int = Field(default=24, ge=1)
    stuck_threshold_hours: int = Field(default=72, ge=1)
    high_urgency_threshold_hours: int = Field(default=24, ge=1)
    medium_urgency_threshold_hours: int = Field(default=72, ge=1)
    low_urgency_threshold_hours: int = Field(default=120, ge=1)
    scheduling_interval_seconds: int = Field(default=3600, ge=1)
    warning_ratio: float = Field(default=0.75, gt=0.0, lt=1.0)
    escalation_sets_status: bool = True
    auto_escalation_target_id: str | None = None
    sweep_concurrency: int = Field(default=8, ge=1)
    per_candidate_timeout_seconds: float = Field(default=10.0, gt=0.0)

    def urgency_threshold_hours(self, urgency: Urgency) -> int:
        if urgency == Urgency.HIGH:
            return self.high_urgency_threshold_hours
        if urgency == Urgency.MEDIUM:
            return self.medium_urgency_threshold_hours
        return self.low_urgency_threshold_hours

    @property
    def scheduling_interval_label(self) -> str:
        seconds = self.scheduling_interval_seconds
        if seconds % 3600 == 0:
            hours = seconds // 3600
            return "Every hour" if hours == 1 else f"Every {hours} hours"
        if seconds % 60 == 0:
            return f"Every {seconds // 60} minutes"
        return f"Every {seconds} seconds"


@dataclass(frozen=True, slots=True)
class EscalationDecision:
    """Outcome of evaluating one complaint against the policy."""

    is_candidate: bool
    reason_code: EscalationReason | None = None
    suggested_priority: EscalationPriority | None = None
    detail: str = ""

    @classmethod
    def not_candidate(cls) -> EscalationDecision:
        return cls(is_candidate=False)


@dataclass(frozen=True, slots=True)
class EscalationOutlook:
    """Display hint: how close a complaint is to its nearest threshold."""

    level: AttentionLevel
    reason_code: EscalationReason | None = None
    hours_remaining: float | None = None

    def to_dict(self) -> dict:
        return {
            "level": self.level.value,
            "reason_code": self.reason_code.value if self.reason_code else None,
            "hours_remaining": round(self.hours_remaining, 1) if self.hours_remaining is not None else None,
        }


@dataclass(slots=True)
class SweepError:
    complaint_id: str
    error_type: str
    message: str

    def to_dict(self) -> dict:
        return {"complaint_id": self.complaint_id, "error_type": self.error_type, "message": self.message}


@dataclass
class SweepResult:
    """Report produced by one escalation sweep."""

    trigger: SweepTrigger
    scanned: int = 0
    candidates: int = 0
    escalated: int = 0
    escalated_ids: list[str] = field(default_factory=list)
    errors: list[SweepError] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict:
        """Serialise to a JSON-compatible dictionary."""
        return {
            "trigger": self.trigger.value,
            "scanned": self.scanned,
            "candidates": self.candidates,
            "escalated": self.escalated,
            "escalated_ids": self.escalated_ids,
            "errors": [e.to_dict() for e in self.errors],
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": round(self.duration_seconds, 3),
        }


@dataclass(frozen=True, slots=True)
class EscalationStats:
    total_escalated: int
    escalated_last_24_hours: int
    escalated_last_week: int
    pending_escalation: int

    def to_dict(self) -> dict:
        return {
            "total_escalated": self.total_escalated,
            "escalated_last_24_hours": self.escalated_last_24_hours,
            "escalated_last_week": self.escalated_last_week,
            "pending_escalation": self.pending_escalation,
        }
