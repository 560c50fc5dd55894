"""HTTP-level tests for the ResolveDesk API.

Each test runs the full application lifespan (seeded user directory,
inline notification dispatch, background scheduler disabled) through
``TestClient`` and authenticates with locally issued bearer tokens.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import ADMIN, OFFICER, STRANGER, SUBMITTER
from config.settings import settings
from src.middleware.auth import JWTTokenVerifier

_verifier = JWTTokenVerifier(settings.jwt_secret, settings.jwt_algorithm)


def _auth(principal) -> dict[str, str]:
    return {"Authorization": f"Bearer {_verifier.issue(principal)}"}


def _form(**overrides) -> dict[str, str]:
    fields = {
        "category": "TECHNICAL",
        "description": "The app crashes when I open my order history",
        "urgency": "MEDIUM",
    }
    fields.update(overrides)
    return fields


@pytest.fixture
def client():
    """Create a test client with the full application lifespan."""
    from src.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def complaint_id(client) -> str:
    response = client.post("/api/v1/complaints/submit", data=_form(), headers=_auth(SUBMITTER))
    assert response.status_code == 201
    return response.json()["id"]


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------


class TestInfrastructure:
    def test_health(self, client) -> None:
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_readiness(self, client) -> None:
        data = client.get("/api/v1/health/ready").json()
        assert data["status"] == "ready"
        assert data["checks"]["scheduler"] == "idle"
        assert data["checks"]["notifications"] == "inline"

    def test_api_info(self, client) -> None:
        data = client.get("/api").json()
        assert data["name"] == "ResolveDesk API"
        assert data["endpoints"]["auto_escalation"] == "/api/v1/auto-escalation"


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


class TestAuth:
    def test_missing_token(self, client) -> None:
        response = client.post("/api/v1/complaints/submit", data=_form())
        assert response.status_code == 401
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert response.json()["error"] == "unauthenticated"

    def test_bad_token(self, client) -> None:
        response = client.get("/api/v1/complaints/my", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_role_required(self, client) -> None:
        response = client.get("/api/v1/complaints/admin/all", headers=_auth(OFFICER))
        assert response.status_code == 403
        assert response.json()["detail"] == "ADMIN role required"


# ---------------------------------------------------------------------------
# Submission and reads
# ---------------------------------------------------------------------------


class TestSubmission:
    def test_submit_and_read_back(self, client, complaint_id) -> None:
        response = client.get(f"/api/v1/complaints/{complaint_id}", headers=_auth(SUBMITTER))

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "NEW"
        assert data["submitter_id"] == SUBMITTER.id
        assert data["escalation_outlook"] is None
        assert data["internal_notes"] == []

    def test_staff_sees_outlook(self, client, complaint_id) -> None:
        data = client.get(f"/api/v1/complaints/{complaint_id}", headers=_auth(OFFICER)).json()
        assert data["escalation_outlook"]["level"] == "OK"

    def test_stranger_denied(self, client, complaint_id) -> None:
        response = client.get(f"/api/v1/complaints/{complaint_id}", headers=_auth(STRANGER))
        assert response.status_code == 403

    def test_anonymous_submission(self, client) -> None:
        response = client.post("/api/v1/complaints/submit/anonymous", data=_form(urgency="HIGH"))
        assert response.status_code == 201
        data = response.json()
        assert data["anonymous"] is True
        assert data["submitter_id"] is None

    def test_short_description_rejected(self, client) -> None:
        response = client.post(
            "/api/v1/complaints/submit", data=_form(description="too short"), headers=_auth(SUBMITTER)
        )
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    def test_attachment_upload(self, client) -> None:
        response = client.post(
            "/api/v1/complaints/submit",
            data=_form(),
            files={"attachment": ("screenshot.png", b"\x89PNG\r\n\x1a\n", "image/png")},
            headers=_auth(SUBMITTER),
        )
        assert response.status_code == 201
        assert response.json()["attachment_path"].endswith(".png")

    def test_unsupported_attachment(self, client) -> None:
        response = client.post(
            "/api/v1/complaints/submit",
            data=_form(),
            files={"attachment": ("tool.exe", b"MZ", "application/x-msdownload")},
            headers=_auth(SUBMITTER),
        )
        assert response.status_code == 415

    def test_my_complaints(self, client, complaint_id) -> None:
        data = client.get("/api/v1/complaints/my", headers=_auth(SUBMITTER)).json()
        assert [c["id"] for c in data] == [complaint_id]


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------


class TestWorkflow:
    def test_full_lifecycle_then_terminal_guard(self, client, complaint_id) -> None:
        deadline = (datetime.now(UTC) + timedelta(days=2)).isoformat()
        assigned = client.put(
            f"/api/v1/complaints/assign/{complaint_id}",
            json={"officer_id": OFFICER.id, "deadline": deadline},
            headers=_auth(ADMIN),
        )
        assert assigned.status_code == 200
        assert assigned.json()["status"] == "ASSIGNED"

        assert client.put(f"/api/v1/complaints/start/{complaint_id}", headers=_auth(OFFICER)).status_code == 200
        assert client.put(f"/api/v1/complaints/complete/{complaint_id}", headers=_auth(OFFICER)).status_code == 200
        resolved = client.put(
            f"/api/v1/complaints/resolve/{complaint_id}", json={"comment": "Fixed in 4.2"}, headers=_auth(ADMIN)
        )
        assert resolved.json()["status"] == "RESOLVED"

        blocked = client.post(
            f"/api/v1/complaints/escalate/{complaint_id}", json={"reason": "Reopen please"}, headers=_auth(ADMIN)
        )
        assert blocked.status_code == 409
        assert blocked.json()["error"] == "terminal_state"

        timeline = client.get(f"/api/v1/complaints/{complaint_id}/timeline", headers=_auth(SUBMITTER)).json()
        assert [e["action"] for e in timeline] == ["SUBMITTED", "ASSIGNED", "IN_PROGRESS", "COMPLETED", "RESOLVED"]

    def test_stale_version_conflict(self, client, complaint_id) -> None:
        first = client.put(
            f"/api/v1/complaints/assign/{complaint_id}",
            json={"officer_id": OFFICER.id, "version": 1},
            headers=_auth(ADMIN),
        )
        second = client.put(
            f"/api/v1/complaints/assign/{complaint_id}",
            json={"officer_id": "officer2", "version": 1},
            headers=_auth(ADMIN),
        )
        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["error"] == "conflict"

    def test_missing_body_field(self, client, complaint_id) -> None:
        response = client.put(f"/api/v1/complaints/assign/{complaint_id}", json={}, headers=_auth(ADMIN))
        assert response.status_code == 400

    def test_escalate_and_de_escalate(self, client, complaint_id) -> None:
        escalated = client.post(
            f"/api/v1/complaints/escalate/{complaint_id}",
            json={"reason": "Repeated crash reports", "priority": "URGENT"},
            headers=_auth(ADMIN),
        )
        assert escalated.json()["escalation_priority"] == "URGENT"

        listed = client.get("/api/v1/complaints/admin/escalated", headers=_auth(ADMIN)).json()
        assert [c["id"] for c in listed] == [complaint_id]

        restored = client.put(
            f"/api/v1/complaints/de-escalate/{complaint_id}",
            params={"comment": "Hotfix shipped"},
            headers=_auth(ADMIN),
        ).json()
        assert restored["status"] == "UNDER_REVIEW"
        assert restored["is_escalated"] is False
        assert restored["escalated_at"] is None

        again = client.put(f"/api/v1/complaints/de-escalate/{complaint_id}", headers=_auth(ADMIN))
        assert again.status_code == 409
        assert again.json()["error"] == "invalid_transition"

    def test_internal_notes_hidden_from_submitter(self, client, complaint_id) -> None:
        added = client.post(
            f"/api/v1/complaints/notes/{complaint_id}",
            json={"text": "Looks like a cache bug"},
            headers=_auth(OFFICER),
        )
        assert added.status_code == 201

        submitter_view = client.get(
            f"/api/v1/complaints/{complaint_id}/timeline", params={"includeInternal": "true"}, headers=_auth(SUBMITTER)
        ).json()
        staff_view = client.get(f"/api/v1/complaints/notes/{complaint_id}", headers=_auth(ADMIN)).json()
        assert [e["action"] for e in submitter_view] == ["SUBMITTED"]
        assert staff_view[-1]["comment"] == "Looks like a cache bug"

    def test_officer_listings(self, client) -> None:
        officers = client.get("/api/v1/complaints/officers", headers=_auth(ADMIN)).json()
        assert {o["id"] for o in officers} == {"officer1", "officer2"}

    def test_dashboard(self, client, complaint_id) -> None:
        stats = client.get("/api/v1/complaints/admin/dashboard", headers=_auth(OFFICER)).json()
        assert stats["total_complaints"] == 1
        assert stats["pending_complaints"] == 1


# ---------------------------------------------------------------------------
# Auto-escalation
# ---------------------------------------------------------------------------


class TestAutoEscalation:
    def test_health_is_public(self, client) -> None:
        data = client.get("/api/v1/auto-escalation/health").json()
        assert data["status"] == "UP"
        assert data["background_running"] is False

    def test_config_roundtrip(self, client) -> None:
        before = client.get("/api/v1/auto-escalation/config", headers=_auth(ADMIN)).json()
        assert before["scheduling_interval"] == "Every hour"

        updated = client.put(
            "/api/v1/auto-escalation/config",
            json={"stuck_threshold_hours": 96, "auto_escalation_target_id": "officer2"},
            headers=_auth(ADMIN),
        ).json()
        assert updated["stuck_threshold_hours"] == 96
        assert updated["auto_escalation_target_id"] == "officer2"
        assert updated["unassigned_threshold_hours"] == before["unassigned_threshold_hours"]

    def test_config_rejects_unknown_target(self, client) -> None:
        response = client.put(
            "/api/v1/auto-escalation/config",
            json={"auto_escalation_target_id": "nobody"},
            headers=_auth(ADMIN),
        )
        assert response.status_code == 400

    def test_config_rejects_null_threshold(self, client) -> None:
        response = client.put(
            "/api/v1/auto-escalation/config",
            json={"stuck_threshold_hours": None},
            headers=_auth(ADMIN),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"
        assert "stuck_threshold_hours" in response.json()["detail"]
        current = client.get("/api/v1/auto-escalation/config", headers=_auth(ADMIN)).json()
        assert current["stuck_threshold_hours"] is not None

    def test_trigger_and_stats(self, client, complaint_id) -> None:
        result = client.post("/api/v1/auto-escalation/trigger", headers=_auth(ADMIN)).json()
        assert result["trigger"] == "MANUAL"
        assert result["scanned"] == 1
        assert result["escalated"] == 0

        stats = client.get("/api/v1/auto-escalation/stats", headers=_auth(ADMIN)).json()
        assert stats["pending_escalation"] == 0
        assert client.get("/api/v1/auto-escalation/candidates", headers=_auth(ADMIN)).json() == []

    def test_smoke_endpoint(self, client) -> None:
        data = client.get("/api/v1/auto-escalation/test", headers=_auth(ADMIN)).json()
        assert data["message"].startswith("Auto-escalation service is working")

    def test_trigger_admin_only(self, client) -> None:
        assert client.post("/api/v1/auto-escalation/trigger", headers=_auth(OFFICER)).status_code == 403


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class TestNotificationsApi:
    def test_assignment_reaches_officer_inbox(self, client, complaint_id) -> None:
        client.put(
            f"/api/v1/complaints/assign/{complaint_id}", json={"officer_id": OFFICER.id}, headers=_auth(ADMIN)
        )

        count = client.get("/api/v1/notifications/unread-count", headers=_auth(OFFICER)).json()
        assert count["count"] == 1
        assert count["poll_interval_seconds"] == 30

        page = client.get("/api/v1/notifications", params={"size": 10}, headers=_auth(OFFICER)).json()
        notification = page["items"][0]
        assert notification["type"] == "COMPLAINT_ASSIGNED"
        assert page["total_pages"] == 1

        foreign = client.put(f"/api/v1/notifications/{notification['id']}/read", headers=_auth(ADMIN))
        assert foreign.status_code == 403

        read = client.put(f"/api/v1/notifications/{notification['id']}/read", headers=_auth(OFFICER)).json()
        assert read["read"] is True

    def test_announce_and_read_all(self, client) -> None:
        sent = client.post(
            "/api/v1/notifications/announce",
            json={"title": "Maintenance", "message": "Down at 22:00 UTC"},
            headers=_auth(ADMIN),
        ).json()
        assert sent["recipients"] >= 4

        assert client.put("/api/v1/notifications/read-all", headers=_auth(SUBMITTER)).json() == {"updated": 1}
        assert client.get("/api/v1/notifications/unread-count", headers=_auth(SUBMITTER)).json()["count"] == 0

    def test_page_size_limit(self, client) -> None:
        response = client.get("/api/v1/notifications", params={"size": 500}, headers=_auth(SUBMITTER))
        assert response.status_code == 400
