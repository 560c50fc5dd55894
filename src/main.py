"""ResolveDesk FastAPI application entry point.

Creates the FastAPI app, configures middleware, includes routers, and
manages the lifecycle of the backend services (stores, lifecycle state
machine, escalation scheduler, notification dispatcher).
"""

from __future__ import annotations

import time
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from config.settings import settings
from src.api.router import api_router
from src.services.errors import ResolveDeskError

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------


def _configure_logging() -> None:
    """Set up structlog with JSON or console rendering based on settings."""
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            settings.log_level,
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Application lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage startup and shutdown of all ResolveDesk services.

    On startup:
      1. Create the complaint, user and notification stores
      2. Seed officers and admins into the user directory
      3. Wire the notification dispatcher, lifecycle state machine,
         assignment manager, timeline, scheduler and complaint service
      4. Store everything on ``app.state``
      5. Start the notification worker and the escalation scheduler

    On shutdown:
      - Stop the scheduler, flush and stop the notification worker,
        close the webhook client.
    """
    _configure_logging()
    logger.info("app.startup", env=settings.env)
    if settings.is_production and settings.jwt_secret == "change-me-in-production":
        logger.warning("app.default_jwt_secret", note="Set RESOLVEDESK_JWT_SECRET in production")

    app.state.start_time = time.time()
    app.state.settings = settings

    def clock() -> datetime:
        return datetime.now(UTC)

    # -- 1. Stores ------------------------------------------------------------
    from src.services.repository import (
        InMemoryComplaintRepository,
        InMemoryNotificationRepository,
        InMemoryUserRepository,
    )

    complaints = InMemoryComplaintRepository()
    users = InMemoryUserRepository()
    notification_store = InMemoryNotificationRepository()

    # -- 2. Seed users ----------------------------------------------------------
    from src.data.seed import seed_users

    try:
        seed_path = Path(settings.seed_users_file) if settings.seed_users_file else None
        await seed_users(users, path=seed_path)
    except Exception:
        logger.warning("app.seed_users_failed", exc_info=True)

    # -- 3. Services ------------------------------------------------------------
    from src.middleware.auth import JWTTokenVerifier
    from src.services.assignment import AssignmentManager
    from src.services.attachments import LocalAttachmentStore
    from src.services.complaints import ComplaintService
    from src.services.lifecycle import LifecycleStateMachine
    from src.services.notifications import NotificationDispatcher, WebhookNotificationTransport
    from src.services.scheduler import EscalationScheduler
    from src.services.timeline import TimelineLog

    transport = None
    if settings.notification_webhook_url:
        transport = WebhookNotificationTransport(
            settings.notification_webhook_url,
            timeout=settings.notification_webhook_timeout,
        )
        logger.info("app.notification_webhook_enabled")

    dispatcher = NotificationDispatcher(notification_store, users, transport=transport, clock=clock)
    machine = LifecycleStateMachine(complaints, users, sink=dispatcher, clock=clock)
    scheduler = EscalationScheduler(
        complaints,
        machine,
        settings.escalation_config(),
        clock=clock,
        initial_delay_seconds=settings.scheduler_initial_delay_seconds,
    )
    attachments = LocalAttachmentStore(
        settings.upload_dir,
        max_bytes=settings.max_attachment_bytes,
        allowed_types=settings.allowed_attachment_type_set,
    )

    # -- 4. app.state -----------------------------------------------------------
    app.state.complaints = complaints
    app.state.users = users
    app.state.notification_store = notification_store
    app.state.notifications = dispatcher
    app.state.lifecycle = machine
    app.state.assignment = AssignmentManager(machine, users)
    app.state.timeline = TimelineLog(complaints, clock)
    app.state.scheduler = scheduler
    app.state.attachments = attachments
    app.state.complaint_service = ComplaintService(
        complaints, lambda: scheduler.config, attachments=attachments, clock=clock
    )
    app.state.token_verifier = JWTTokenVerifier(settings.jwt_secret, settings.jwt_algorithm)

    # -- 5. Background tasks ----------------------------------------------------
    if settings.notification_worker_enabled:
        dispatcher.start()
    if settings.enable_background_scheduler:
        scheduler.start()
    else:
        logger.info("app.background_scheduler_disabled")

    logger.info("app.startup_complete")

    yield

    # -- Shutdown -----------------------------------------------------------
    logger.info("app.shutdown_start")
    await scheduler.stop()
    await dispatcher.stop()
    if transport is not None:
        await transport.close()
    logger.info("app.shutdown_complete")


# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------

app = FastAPI(
    title="ResolveDesk API",
    description=(
        "ResolveDesk -- complaint lifecycle service with officer assignment, "
        "deadlines, manual and automatic escalation, and stakeholder notifications."
    ),
    version="0.1.0",
    lifespan=lifespan,
    default_response_class=ORJSONResponse,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

# -- CORS middleware --------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=settings.is_production,
    allow_methods=["GET", "POST", "PUT", "OPTIONS", "HEAD"],
    allow_headers=["Content-Type", "Accept", "Authorization"],
)


# -- Error handling ---------------------------------------------------------


@app.exception_handler(ResolveDeskError)
async def domain_error_handler(request: Request, exc: ResolveDeskError) -> ORJSONResponse:
    """Render domain errors as ``{"detail", "error"}`` with their HTTP status."""
    if exc.status_code >= 500:
        logger.warning("api.collaborator_error", path=request.url.path, error=exc.error_code, detail=exc.message)
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return ORJSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": exc.error_code},
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    errors = [{k: v for k, v in e.items() if k != "ctx"} for e in exc.errors()]
    return ORJSONResponse(
        status_code=400,
        content={"detail": jsonable_encoder(errors), "error": "validation_error"},
    )


# -- Prometheus metrics -----------------------------------------------------
from prometheus_fastapi_instrumentator import Instrumentator  # noqa: E402

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    excluded_handlers=["/metrics", "/api/v1/health"],
).instrument(app).expose(
    app,
    endpoint="/metrics",
    include_in_schema=not settings.is_production,
)

# -- Include routers -------------------------------------------------------
app.include_router(api_router)


@app.get("/api")
async def api_info() -> dict:
    """API information endpoint."""
    return {
        "name": "ResolveDesk API",
        "description": "Complaint lifecycle, escalation and notification service",
        "version": app.version,
        "docs": "/docs",
        "health": "/api/v1/health",
        "endpoints": {
            "complaints": "/api/v1/complaints",
            "auto_escalation": "/api/v1/auto-escalation",
            "notifications": "/api/v1/notifications",
            "health": "/api/v1/health",
            "metrics": "/metrics",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=not settings.is_production,
        log_level=settings.log_level.lower(),
    )
