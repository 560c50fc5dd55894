"""Tests for models, settings, seed data and token handling."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from config.settings import Settings
from src.data.seed import load_users, seed_users
from src.middleware.auth import JWTTokenVerifier, _parse_roles
from src.models.complaint import as_utc
from src.models.enums import ComplaintStatus, Role, SweepTrigger
from src.models.escalation import EscalationConfig, SweepResult
from src.models.notification import NotificationPage
from src.models.request import ComplaintSubmission
from src.models.user import SYSTEM_PRINCIPAL, Principal
from src.services.errors import AuthenticationError
from src.services.repository import InMemoryUserRepository


# ---------------------------------------------------------------------------
# Enums and helpers
# ---------------------------------------------------------------------------


class TestEnums:
    def test_terminal_statuses(self) -> None:
        assert ComplaintStatus.RESOLVED.is_terminal
        assert ComplaintStatus.CLOSED.is_terminal
        assert not ComplaintStatus.ESCALATED.is_terminal
        assert not ComplaintStatus.COMPLETED.is_terminal

    def test_as_utc(self) -> None:
        ist = timezone(timedelta(hours=5, minutes=30))
        assert as_utc(datetime(2025, 1, 1, 12, 0)) == datetime(2025, 1, 1, 12, 0, tzinfo=UTC)
        assert as_utc(datetime(2025, 1, 1, 17, 30, tzinfo=ist)) == datetime(2025, 1, 1, 12, 0, tzinfo=UTC)
        assert as_utc(None) is None


class TestPrincipal:
    def test_role_checks(self) -> None:
        officer = Principal(id="o", roles=frozenset({Role.OFFICER}))
        assert officer.is_staff
        assert not officer.is_admin
        assert officer.has_any_role(Role.ADMIN, Role.OFFICER)
        assert officer.display_name == "o"

    def test_system_principal(self) -> None:
        assert SYSTEM_PRINCIPAL.is_system
        assert SYSTEM_PRINCIPAL.is_admin


# ---------------------------------------------------------------------------
# Escalation models
# ---------------------------------------------------------------------------


class TestEscalationModels:
    def test_config_is_frozen(self) -> None:
        config = EscalationConfig()
        with pytest.raises(PydanticValidationError):
            config.stuck_threshold_hours = 1

    def test_config_rejects_zero_thresholds(self) -> None:
        with pytest.raises(PydanticValidationError):
            EscalationConfig(unassigned_threshold_hours=0)

    @pytest.mark.parametrize(
        ("seconds", "label"),
        [(3600, "Every hour"), (7200, "Every 2 hours"), (900, "Every 15 minutes"), (45, "Every 45 seconds")],
    )
    def test_interval_label(self, seconds, label) -> None:
        assert EscalationConfig(scheduling_interval_seconds=seconds).scheduling_interval_label == label

    def test_sweep_result_duration(self) -> None:
        start = datetime(2025, 1, 1, tzinfo=UTC)
        result = SweepResult(trigger=SweepTrigger.SCHEDULED, started_at=start)
        assert result.duration_seconds == 0.0
        result.finished_at = start + timedelta(seconds=2)
        assert result.to_dict()["duration_seconds"] == 2.0

    def test_notification_page_count(self) -> None:
        assert NotificationPage(items=[], page=0, size=20, total=41).total_pages == 3
        assert NotificationPage(items=[], page=0, size=20, total=0).total_pages == 0


class TestRequests:
    def test_description_bounds(self) -> None:
        with pytest.raises(PydanticValidationError):
            ComplaintSubmission(category="OTHER", description="short", urgency="LOW")


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


class TestSettings:
    def test_env_overrides(self, monkeypatch) -> None:
        monkeypatch.setenv("RESOLVEDESK_STUCK_THRESHOLD_HOURS", "12")
        monkeypatch.setenv("RESOLVEDESK_AUTO_ESCALATION_TARGET_ID", "officer2")
        monkeypatch.setenv("RESOLVEDESK_ALLOWED_ATTACHMENT_TYPES", "image/png, TEXT/PLAIN")

        s = Settings()
        config = s.escalation_config()

        assert config.stuck_threshold_hours == 12
        assert config.auto_escalation_target_id == "officer2"
        assert s.allowed_attachment_type_set == frozenset({"image/png", "text/plain"})

    def test_server_bind_overrides(self, monkeypatch) -> None:
        monkeypatch.setenv("API_HOST", "127.0.0.1")
        monkeypatch.setenv("API_PORT", "9100")
        s = Settings()
        assert (s.api_host, s.api_port) == ("127.0.0.1", 9100)

    def test_cors_list(self, monkeypatch) -> None:
        monkeypatch.setenv("RESOLVEDESK_CORS_ORIGINS", "http://a.test, http://b.test,")
        assert Settings().cors_origin_list == ["http://a.test", "http://b.test"]


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------


class TestSeed:
    def test_bundled_users(self) -> None:
        users = {u.id: u for u in load_users()}
        assert Role.ADMIN in users["admin1"].roles
        assert users["officer1"].can_handle_complaints
        assert not users["user1"].can_handle_complaints

    def test_bad_entries_skipped(self, tmp_path) -> None:
        path = tmp_path / "users.json"
        path.write_text(json.dumps([{"id": "ok", "roles": ["OFFICER"]}, {"roles": ["ADMIN"]}]))
        assert [u.id for u in load_users(path)] == ["ok"]

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(FileNotFoundError):
            load_users(tmp_path / "nope.json")

    @pytest.mark.asyncio
    async def test_seed_into_directory(self) -> None:
        directory = InMemoryUserRepository()
        await seed_users(directory)
        assert {u.id for u in await directory.with_role(Role.OFFICER)} == {"officer1", "officer2"}


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


class TestTokens:
    def test_issue_and_verify(self) -> None:
        verifier = JWTTokenVerifier("secret")
        principal = Principal(id="admin1", roles=frozenset({Role.ADMIN}), full_name="Asha Verma")

        verified = verifier.verify(verifier.issue(principal))

        assert verified == principal

    def test_wrong_secret(self) -> None:
        token = JWTTokenVerifier("one").issue(Principal(id="x"))
        with pytest.raises(AuthenticationError):
            JWTTokenVerifier("two").verify(token)

    def test_expired(self) -> None:
        verifier = JWTTokenVerifier("secret")
        token = verifier.issue(Principal(id="x"), expires_in=timedelta(seconds=-5))
        with pytest.raises(AuthenticationError):
            verifier.verify(token)

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            (["ROLE_ADMIN", "officer"], {Role.ADMIN, Role.OFFICER}),
            ("ADMIN,USER", {Role.ADMIN, Role.USER}),
            (["SUPERUSER"], {Role.USER}),
            (None, {Role.USER}),
        ],
    )
    def test_role_claims(self, raw, expected) -> None:
        assert _parse_roles(raw) == frozenset(expected)
