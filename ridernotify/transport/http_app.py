# ridernotify/transport/http_app.py
"""
HTTP application.

Security layers:
1. Public: health check and the Twilio webhooks (signature validated)
2. Protected: dispatch, stats and metrics (admin bearer token)

Run:
    uvicorn ridernotify.transport.http_app:app
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from ridernotify.bootstrap import NotificationServices, build_services
from ridernotify.config import Settings, get_settings, validate_or_warn
from ridernotify.core.errors import NotificationError
from ridernotify.infra.db_async import close_pool, init_pool
from ridernotify.infra.http_client import close_all_sessions
from ridernotify.infra.logging_config import get_logger, setup_logging
from ridernotify.infra.metrics import get_metrics_collector
from ridernotify.infra.schema_validator import validate_schema_version
from ridernotify.transport.middleware import (
    ErrorHandlingMiddleware,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
)
from ridernotify.transport.schemas import (
    BatchOut,
    DispatchIn,
    NotificationOut,
    NotifyIn,
    StatsOut,
)
from ridernotify.transport.security import require_admin_token, validate_token_strength
from ridernotify.transport.twilio_webhook import twilio_sms_handler, twilio_status_handler

logger = get_logger(__name__)


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_services(request: Request) -> NotificationServices:
    return request.app.state.services


# ============================================================================
# LIFESPAN
# ============================================================================

async def _startup(fastapi_app: FastAPI) -> bool:
    """Build services unless they were injected. Returns True if a DB pool was opened."""
    settings: Settings = fastapi_app.state.settings

    for warning in validate_or_warn(settings):
        logger.warning(f"Config: {warning}")
    if settings.admin_token:
        for warning in validate_token_strength(settings.admin_token, "ADMIN_TOKEN"):
            logger.warning(f"Security: {warning}")

    if fastapi_app.state.services is not None:
        return False

    opened_pool = False
    if settings.storage_backend == "postgres":
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is required when STORAGE_BACKEND=postgres")
        await init_pool(settings.database_url, settings.pg_pool_min, settings.pg_pool_max)
        opened_pool = True
        # Does NOT run migrations: python -m ridernotify.infra.migrate
        await validate_schema_version(settings.expected_schema_version)

    fastapi_app.state.services = build_services(settings)
    logger.info(f"Notification engine ready: env={settings.app_env}, storage={settings.storage_backend}")
    return opened_pool


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    """Application lifecycle: startup and shutdown"""
    opened_pool = await _startup(fastapi_app)
    try:
        yield
    finally:
        await close_all_sessions()
        if opened_pool:
            await close_pool()
        logger.info("Shutdown complete")


# ============================================================================
# APP
# ============================================================================

def create_app(
        settings: Settings | None = None,
        services: NotificationServices | None = None,
        *,
        configure_logging: bool = True,
) -> FastAPI:
    settings = settings or get_settings()
    if configure_logging:
        setup_logging(level=settings.log_level, use_json=settings.is_production)

    fastapi_app = FastAPI(
        title="Rider Notification Service",
        lifespan=lifespan,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None,
        openapi_url=None if settings.is_production else "/openapi.json",
    )
    fastapi_app.state.settings = settings
    fastapi_app.state.services = services

    fastapi_app.add_middleware(ErrorHandlingMiddleware)
    fastapi_app.add_middleware(RequestLoggingMiddleware, enabled=settings.enable_request_logging)
    fastapi_app.add_middleware(RequestIDMiddleware)

    _register_exception_handlers(fastapi_app, settings)
    _register_routes(fastapi_app)
    return fastapi_app


def _register_exception_handlers(fastapi_app: FastAPI, settings: Settings) -> None:
    @fastapi_app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        if exc.status_code >= 500:
            logger.error(f"Server error: {exc.detail}", extra={"status_code": exc.status_code})
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )

    @fastapi_app.exception_handler(NotificationError)
    async def notification_error_handler(request: Request, exc: NotificationError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @fastapi_app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc.__class__.__name__}", exc_info=True)
        message = "Internal server error" if settings.is_production else f"{exc.__class__.__name__}: {exc}"
        return JSONResponse(status_code=500, content={"error": message})


def _register_routes(fastapi_app: FastAPI) -> None:
    admin = [Depends(require_admin_token)]

    # ------------------------------------------------------------------
    # PUBLIC
    # ------------------------------------------------------------------

    @fastapi_app.get("/health")
    def health():
        return {"status": "healthy"}

    @fastapi_app.post("/webhooks/twilio/sms")
    async def webhook_twilio_sms(request: Request):
        """Inbound rider replies. Always 200 TwiML for genuine Twilio requests."""
        return await twilio_sms_handler(request)

    @fastapi_app.post("/webhooks/twilio/status")
    async def webhook_twilio_status(request: Request):
        """Delivery status callbacks for outbound SMS."""
        return await twilio_status_handler(request)

    # ------------------------------------------------------------------
    # ADMIN
    # ------------------------------------------------------------------

    @fastapi_app.get("/metrics", dependencies=admin)
    def metrics():
        return get_metrics_collector().get_metrics()

    @fastapi_app.post("/admin/dispatch", dependencies=admin, response_model=BatchOut)
    async def admin_dispatch(payload: DispatchIn, services: NotificationServices = Depends(get_services)):
        target = payload.filter if payload.filter is not None else payload.assignment_ids
        result = await services.orchestrator.dispatch(target, payload.channel)
        return BatchOut.from_result(result)

    @fastapi_app.post(
        "/admin/assignments/{assignment_id}/notify", dependencies=admin, response_model=NotificationOut
    )
    async def admin_notify_assignment(
            assignment_id: str,
            payload: NotifyIn,
            services: NotificationServices = Depends(get_services),
    ):
        result = await services.orchestrator.send_single(assignment_id, payload.channel)
        return NotificationOut.from_result(result)

    @fastapi_app.get("/admin/assignments/{assignment_id}/notification-status", dependencies=admin)
    async def admin_notification_status(
            assignment_id: str,
            services: NotificationServices = Depends(get_services),
    ):
        status = await services.orchestrator.notification_status_for(assignment_id)
        return {"assignment_id": assignment_id, "status": status.value}

    @fastapi_app.post("/admin/requests/{request_id}/notify", dependencies=admin, response_model=BatchOut)
    async def admin_notify_request(
            request_id: str,
            payload: NotifyIn,
            services: NotificationServices = Depends(get_services),
    ):
        result = await services.orchestrator.dispatch_request(request_id, payload.channel)
        return BatchOut.from_result(result)

    @fastapi_app.get("/admin/notifications/stats", dependencies=admin, response_model=StatsOut)
    async def admin_stats(services: NotificationServices = Depends(get_services)):
        stats = await services.orchestrator.get_notification_stats()
        return StatsOut.from_stats(stats, generated_at=datetime.now(timezone.utc))


app = create_app()
