# ridernotify/bootstrap.py
"""
Composition root: turns Settings into wired engine components.

Nothing below the transport layer reads Settings directly; each component
gets the values it needs here, once, at startup.
"""
from __future__ import annotations

from dataclasses import dataclass

from ridernotify.config import Settings
from ridernotify.core.engine_config import EngineConfig
from ridernotify.core.inbound import InboundResponseHandler
from ridernotify.core.orchestrator import DispatchOrchestrator
from ridernotify.core.ports import TrackingLog
from ridernotify.core.status_recorder import StatusRecorder
from ridernotify.infra.activity_log import LoggingActivityLog
from ridernotify.infra.backoff import BackoffPolicy
from ridernotify.infra.delivery import DeliveryGatewayAdapter
from ridernotify.infra.email_gateway import DevEmailGateway, SmtpEmailGateway
from ridernotify.infra.logging_config import get_logger
from ridernotify.infra.read_cache import AssignmentReadCache
from ridernotify.infra.sms_gateway import DevSmsGateway, TwilioSmsGateway

logger = get_logger(__name__)


@dataclass
class NotificationServices:
    orchestrator: DispatchOrchestrator
    inbound: InboundResponseHandler
    tracking: TrackingLog


def build_gateways(settings: Settings):
    if settings.twilio_enabled:
        sms = TwilioSmsGateway(
            settings.twilio_account_sid,
            settings.twilio_auth_token,
            settings.twilio_phone_number,
            api_base_url=settings.twilio_api_base_url,
            status_callback_url=settings.twilio_status_callback_url,
            timeout_seconds=settings.gateway_timeout_seconds,
        )
    else:
        logger.warning("Twilio not configured: using dev SMS gateway (messages are only logged)")
        sms = DevSmsGateway()

    if settings.smtp_enabled:
        email = SmtpEmailGateway(
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_user,
            settings.smtp_password,
            from_address=settings.email_from,
            timeout_seconds=settings.gateway_timeout_seconds,
        )
    else:
        logger.warning("SMTP not configured: using dev email gateway (messages are only logged)")
        email = DevEmailGateway()

    return sms, email


def build_stores(settings: Settings):
    """(assignments, riders, request_details, tracking) for the configured backend."""
    if settings.storage_backend == "memory":
        from ridernotify.infra.memory_repos import (
            InMemoryAssignmentStore,
            InMemoryRequestDetails,
            InMemoryRiderDirectory,
            InMemoryTrackingLog,
        )
        return (
            InMemoryAssignmentStore(),
            InMemoryRiderDirectory(),
            InMemoryRequestDetails(),
            InMemoryTrackingLog(),
        )

    from ridernotify.infra.pg_assignment_repo_async import AsyncPostgresAssignmentStore
    from ridernotify.infra.pg_directory_repo_async import (
        AsyncPostgresRequestDetails,
        AsyncPostgresRiderDirectory,
    )
    from ridernotify.infra.pg_tracking_log_async import AsyncPostgresTrackingLog
    return (
        AsyncPostgresAssignmentStore(),
        AsyncPostgresRiderDirectory(),
        AsyncPostgresRequestDetails(),
        AsyncPostgresTrackingLog(),
    )


def build_services(settings: Settings, stores=None, gateways=None) -> NotificationServices:
    store, riders, details, tracking = stores or build_stores(settings)
    sms, email = gateways or build_gateways(settings)

    config = EngineConfig.from_settings(settings)
    cache = AssignmentReadCache(store.list, ttl_seconds=settings.assignment_cache_ttl_seconds)
    recorder = StatusRecorder(store, cache)
    activity = LoggingActivityLog()
    adapter = DeliveryGatewayAdapter(
        sms,
        email,
        BackoffPolicy(
            max_retries=settings.gateway_max_retries,
            base_delay=settings.gateway_base_delay_seconds,
            jitter=settings.gateway_jitter_seconds,
        ),
        timeout_seconds=settings.gateway_timeout_seconds,
    )

    orchestrator = DispatchOrchestrator(
        store, riders, details, adapter, recorder, tracking, activity, config, reader=cache,
    )
    inbound = InboundResponseHandler(
        store, riders, details, adapter, recorder, tracking, activity, config,
    )
    return NotificationServices(orchestrator=orchestrator, inbound=inbound, tracking=tracking)
