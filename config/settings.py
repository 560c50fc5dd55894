"""Application settings loaded from environment variables.

Uses pydantic-settings for validation and type coercion.  All keys use
the ``RESOLVEDESK_`` prefix; a handful of infrastructure settings keep
their canonical environment variable names via ``validation_alias``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from src.models.escalation import EscalationConfig


class Environment(StrEnum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Central configuration for the ResolveDesk service.

    Environment variables are loaded from a ``.env`` file when present.
    """

    model_config = SettingsConfigDict(
        env_prefix="RESOLVEDESK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ── App ────────────────────────────────────────────────────────────
    env: Literal["development", "production"] = "development"

    # ── API ────────────────────────────────────────────────────────────
    api_host: str = Field(default="0.0.0.0", validation_alias="API_HOST")
    api_port: int = Field(default=8000, validation_alias="API_PORT")
    cors_origins: str = "http://localhost:3000"

    # ── Logging ────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_format: str = Field(default="json", validation_alias="LOG_FORMAT")

    # ── Authentication (token verification only) ───────────────────────
    jwt_secret: str = "change-me-in-production"
    jwt_algorithm: str = "HS256"

    # ── Escalation thresholds (hours) ──────────────────────────────────
    escalation_enabled: bool = True
    unassigned_threshold_hours: int = Field(default=48, ge=1)
    overdue_threshold_hours: int = Field(default=24, ge=1)
    stuck_threshold_hours: int = Field(default=72, ge=1)
    high_urgency_threshold_hours: int = Field(default=24, ge=1)
    medium_urgency_threshold_hours: int = Field(default=72, ge=1)
    low_urgency_threshold_hours: int = Field(default=120, ge=1)
    escalation_warning_ratio: float = Field(default=0.75, gt=0.0, lt=1.0)
    escalation_sets_status: bool = True
    auto_escalation_target_id: str | None = None

    # ── Scheduler ──────────────────────────────────────────────────────
    scheduling_interval_seconds: int = Field(default=3600, ge=1)  # hourly
    scheduler_initial_delay_seconds: float = 60.0
    sweep_concurrency: int = Field(default=8, ge=1)
    per_candidate_timeout_seconds: float = Field(default=10.0, gt=0.0)
    enable_background_scheduler: bool = True

    # ── Attachments ────────────────────────────────────────────────────
    upload_dir: str = "uploads"
    max_attachment_bytes: int = 10 * 1024 * 1024  # 10 MiB
    allowed_attachment_types: str = "image/jpeg,image/png,image/gif,application/pdf,text/plain"

    # ── Notifications ──────────────────────────────────────────────────
    notification_webhook_url: str | None = None
    notification_webhook_timeout: float = 5.0
    notification_poll_interval_seconds: int = 30
    notification_worker_enabled: bool = True  # false = dispatch inline after each commit

    # ── Seed data ──────────────────────────────────────────────────────
    seed_users_file: str | None = None

    # ── Derived Properties ─────────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.env == Environment.PRODUCTION

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def allowed_attachment_type_set(self) -> frozenset[str]:
        return frozenset(t.strip().lower() for t in self.allowed_attachment_types.split(",") if t.strip())

    def escalation_config(self) -> EscalationConfig:
        """Build the immutable escalation configuration from these settings."""
        from src.models.escalation import EscalationConfig

        return EscalationConfig(
            enabled=self.escalation_enabled,
            unassigned_threshold_hours=self.unassigned_threshold_hours,
            overdue_threshold_hours=self.overdue_threshold_hours,
            stuck_threshold_hours=self.stuck_threshold_hours,
            high_urgency_threshold_hours=self.high_urgency_threshold_hours,
            medium_urgency_threshold_hours=self.medium_urgency_threshold_hours,
            low_urgency_threshold_hours=self.low_urgency_threshold_hours,
            scheduling_interval_seconds=self.scheduling_interval_seconds,
            warning_ratio=self.escalation_warning_ratio,
            escalation_sets_status=self.escalation_sets_status,
            auto_escalation_target_id=self.auto_escalation_target_id,
            sweep_concurrency=self.sweep_concurrency,
            per_candidate_timeout_seconds=self.per_candidate_timeout_seconds,
        )


# Module-level singleton; import ``settings`` everywhere.
settings = Settings()
