"""Notification polling endpoints.

Clients poll ``/notifications/unread-count`` (every 30 seconds by
default) and page through ``/notifications``.  Everything is scoped to
the caller.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from src.middleware.auth import get_principal, require_roles
from src.models.enums import Role
from src.models.notification import Notification, NotificationPage
from src.models.request import AnnouncementRequest
from src.models.user import Principal

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationPage)
async def list_notifications(
    request: Request,
    page: int = Query(default=0, ge=0),  # noqa: B008
    size: int = Query(default=20, ge=1, le=100),  # noqa: B008
    principal: Principal = Depends(get_principal),  # noqa: B008
) -> NotificationPage:
    return await request.app.state.notifications.list_for(principal, page, size)


@router.get("/unread-count")
async def unread_count(request: Request, principal: Principal = Depends(get_principal)) -> dict:  # noqa: B008
    count = await request.app.state.notifications.unread_count(principal)
    return {
        "count": count,
        "poll_interval_seconds": request.app.state.settings.notification_poll_interval_seconds,
    }


@router.put("/read-all")
async def mark_all_read(request: Request, principal: Principal = Depends(get_principal)) -> dict:  # noqa: B008
    updated = await request.app.state.notifications.mark_all_read(principal)
    return {"updated": updated}


@router.put("/{notification_id}/read", response_model=Notification)
async def mark_read(
    notification_id: str,
    request: Request,
    principal: Principal = Depends(get_principal),  # noqa: B008
) -> Notification:
    return await request.app.state.notifications.mark_read(notification_id, principal)


@router.post("/announce")
async def announce(
    body: AnnouncementRequest,
    request: Request,
    principal: Principal = Depends(require_roles(Role.ADMIN)),  # noqa: B008
) -> dict:
    """Send a system announcement to every known user."""
    recipients = await request.app.state.notifications.announce(body.title, body.message, principal)
    return {"recipients": recipients}
