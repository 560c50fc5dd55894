"""Auto-escalation management endpoints.

Admin-only views of the scheduler (stats, candidates, config), a manual
sweep trigger, and a public health probe.
"""

from __future__ import annotations

import pydantic
import structlog
from fastapi import APIRouter, Depends, Request

from src.middleware.auth import require_roles
from src.models.enums import Role, SweepTrigger
from src.models.escalation import EscalationConfig
from src.models.request import EscalationConfigUpdate
from src.models.response import ComplaintResponse, MessageResponse
from src.models.user import Principal
from src.services.errors import ValidationError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/auto-escalation", tags=["auto-escalation"])

_admin = require_roles(Role.ADMIN)


def _config_view(config: EscalationConfig) -> dict:
    return {**config.model_dump(), "scheduling_interval": config.scheduling_interval_label}


@router.get("/stats")
async def escalation_stats(request: Request, principal: Principal = Depends(_admin)) -> dict:  # noqa: B008
    stats = await request.app.state.scheduler.stats()
    return stats.to_dict()


@router.get("/candidates")
async def escalation_candidates(request: Request, principal: Principal = Depends(_admin)) -> list[dict]:  # noqa: B008
    """Complaints the next sweep would escalate, with the rule each one breaks."""
    service = request.app.state.complaint_service
    pairs = await request.app.state.scheduler.candidates()
    return [
        {
            "complaint": ComplaintResponse.build(c, principal, service.now(), service.outlook(c)),
            "reason_code": d.reason_code,
            "suggested_priority": d.suggested_priority,
            "detail": d.detail,
        }
        for c, d in pairs
    ]


@router.get("/config")
async def escalation_config(request: Request, principal: Principal = Depends(_admin)) -> dict:  # noqa: B008
    return _config_view(request.app.state.scheduler.config)


@router.put("/config")
async def update_escalation_config(
    body: EscalationConfigUpdate,
    request: Request,
    principal: Principal = Depends(_admin),  # noqa: B008
) -> dict:
    """Hot-reload thresholds.  Omitted fields keep their current values."""
    scheduler = request.app.state.scheduler
    updates = body.model_dump(exclude_unset=True)
    target_id = updates.get("auto_escalation_target_id")
    if target_id is not None:
        target = await request.app.state.users.get(target_id)
        if target is None or not target.can_handle_complaints:
            raise ValidationError(f"User {target_id} cannot receive escalations")
    try:
        config = EscalationConfig.model_validate({**scheduler.config.model_dump(), **updates})
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        raise ValidationError(f"{'.'.join(str(p) for p in first['loc'])}: {first['msg']}") from None
    scheduler.reload_config(config)
    logger.info("api.escalation.config_updated", by=principal.id, fields=sorted(updates))
    return _config_view(config)


@router.get("/test", response_model=MessageResponse)
async def test_auto_escalation(
    request: Request,
    principal: Principal = Depends(_admin),  # noqa: B008
) -> MessageResponse:
    """Smoke test: read stats and candidates without escalating anything."""
    scheduler = request.app.state.scheduler
    stats = await scheduler.stats()
    candidates = await scheduler.candidates()
    return MessageResponse(
        message=(
            f"Auto-escalation service is working. "
            f"Stats: Total={stats.total_escalated}, Candidates={len(candidates)}"
        )
    )


@router.post("/trigger")
async def trigger_sweep(request: Request, principal: Principal = Depends(_admin)) -> dict:  # noqa: B008
    """Run a sweep now.  Returns 409 if one is already running."""
    logger.info("api.escalation.manual_trigger", by=principal.id)
    result = await request.app.state.scheduler.run_sweep(SweepTrigger.MANUAL)
    return result.to_dict()


@router.get("/health")
async def escalation_health(request: Request) -> dict:
    return request.app.state.scheduler.health_check()
