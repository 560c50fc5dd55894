"""Main API router combining all v1 route modules.

Aggregates all routers under the ``/api/v1`` prefix so the
FastAPI application only needs to include a single router.

Includes:
    * Complaints: submission, workflow transitions, listings, timeline
    * Auto-escalation: scheduler stats, candidates, config, manual sweep
    * Notifications: polling, read receipts, announcements
    * Health: liveness and readiness probes
"""

from __future__ import annotations

from fastapi import APIRouter

from src.api.v1 import complaints, escalation, health, notifications

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(complaints.router)
api_router.include_router(escalation.router)
api_router.include_router(notifications.router)
api_router.include_router(health.router)
