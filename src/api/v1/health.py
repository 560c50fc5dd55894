"""Health check endpoints.

Liveness and readiness probes for container deployments.  Readiness
checks the in-process collaborators the API depends on.
"""

from __future__ import annotations

import time

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


class ReadinessResponse(BaseModel):
    status: str
    checks: dict[str, str]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Liveness probe.  Does *not* check collaborators."""
    start_time: float = getattr(request.app.state, "start_time", time.time())
    return HealthResponse(
        status="healthy",
        version=request.app.version,
        uptime_seconds=round(time.time() - start_time, 2),
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request) -> ReadinessResponse:
    """Readiness probe: stores, scheduler and notification worker."""
    state = request.app.state
    checks: dict[str, str] = {}
    all_ok = True

    complaints = getattr(state, "complaints", None)
    if complaints is not None:
        try:
            await complaints.get("_readiness_probe")
            checks["complaint_store"] = "ok"
        except Exception as exc:
            checks["complaint_store"] = f"error: {exc!s}"
            all_ok = False
    else:
        checks["complaint_store"] = "not_initialised"
        all_ok = False

    users = getattr(state, "users", None)
    if users is not None:
        checks["user_directory"] = f"ok ({len(await users.list())} users)"
    else:
        checks["user_directory"] = "not_initialised"
        all_ok = False

    scheduler = getattr(state, "scheduler", None)
    if scheduler is None:
        checks["scheduler"] = "not_initialised"
        all_ok = False
    elif scheduler.is_running:
        checks["scheduler"] = "running"
    else:
        checks["scheduler"] = "idle"

    notifications = getattr(state, "notifications", None)
    if notifications is None:
        checks["notifications"] = "not_initialised"
        all_ok = False
    else:
        checks["notifications"] = "worker" if notifications.is_running else "inline"

    status = "ready" if all_ok else "degraded"
    logger.info("health.readiness_check", status=status, checks=checks)
    return ReadinessResponse(status=status, checks=checks)
