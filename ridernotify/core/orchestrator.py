# ridernotify/core/orchestrator.py
"""
Dispatch Orchestrator.

Picks target assignments, composes per channel, hands each message to the
delivery adapter, records successful sends and aggregates the outcome.

Sends inside a batch are strictly sequential and in selection order: each
send (including the adapter's retry waits) and each pacing pause is awaited
before the next target starts.  One target failing never stops the batch;
the BatchResult carries both counts and a bounded sample of error strings.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Sequence, Union

from ridernotify.core.composer import AssignmentContext, compose_email, compose_sms
from ridernotify.core.domain import (
    ACTIVE_STATUSES,
    Assignment,
    BatchResult,
    Channel,
    DeliveryResult,
    ErrorKind,
    NotificationResult,
    NotificationStats,
    NotificationStatus,
    OutboundMessage,
    Rider,
)
from ridernotify.core.engine_config import EngineConfig
from ridernotify.core.errors import InternalError, NotFoundError
from ridernotify.core.ports import (
    ActivityLog,
    AssignmentStore,
    RequestDetailsSource,
    RiderDirectory,
    TrackingLog,
)
from ridernotify.core.selection import PRESETS, notification_status, select
from ridernotify.core.status_recorder import StatusRecorder
from ridernotify.infra.logging_config import LogContext, get_logger
from ridernotify.infra.metrics import NotifyMetrics

logger = get_logger(__name__)

Clock = Callable[[], datetime]
Sleep = Callable[[float], Awaitable[None]]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def load_context(
        assignment: Assignment,
        store: AssignmentStore,
        request_details: RequestDetailsSource,
        config: EngineConfig,
) -> AssignmentContext:
    """Assignment + request enrichment + co-assigned riders, ready to compose."""
    details = None
    co_riders: tuple[str, ...] = ()
    if assignment.request_id:
        try:
            details = await request_details.get(assignment.request_id)
        except Exception as exc:
            logger.warning(f"Request details unavailable for {assignment.request_id}: {exc}")

        siblings = await store.list_for_request(assignment.request_id)
        co_riders = tuple(
            s.rider_name.strip() for s in siblings
            if s.id != assignment.id and s.has_rider() and not s.is_terminal()
        )

    return AssignmentContext(
        assignment=assignment,
        details=details,
        co_riders=co_riders,
        public_base_url=config.public_base_url,
        signature=config.email_signature,
    )


class DispatchOrchestrator:
    def __init__(
            self,
            store: AssignmentStore,
            riders: RiderDirectory,
            request_details: RequestDetailsSource,
            adapter,
            recorder: StatusRecorder,
            tracking: TrackingLog,
            activity: ActivityLog,
            config: EngineConfig | None = None,
            *,
            reader=None,
            clock: Clock = utc_now,
            sleep: Sleep = asyncio.sleep,
    ):
        self._store = store
        self._riders = riders
        self._details = request_details
        self._adapter = adapter
        self._recorder = recorder
        self._tracking = tracking
        self._activity = activity
        self._config = config or EngineConfig()
        # Listing source for presets and stats; the AssignmentReadCache in production
        self._reader = reader or store
        self._clock = clock
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Single assignment
    # ------------------------------------------------------------------

    async def send_single(self, assignment_id: str, channel: Channel) -> NotificationResult:
        """
        Notify the rider of one assignment over ``channel``.

        Never raises: a missing assignment, missing rider or missing contact
        becomes a failed result naming what is missing.
        """
        result = await self._notify(assignment_id, channel)
        self._activity.record(
            f"{channel.value} notification for {assignment_id}: {result.message}",
            assignment_id=assignment_id,
        )
        return result

    async def _notify(self, assignment_id: str, channel: Channel) -> NotificationResult:
        try:
            return await self._notify_unsafe(assignment_id, channel)
        except NotFoundError as exc:
            logger.info(f"Notification skipped: {exc.detail}", extra={"assignment_id": assignment_id})
            return _failed_result(assignment_id, channel, exc.detail, ErrorKind.VALIDATION)
        except Exception as exc:
            logger.exception(f"Unexpected error notifying {assignment_id}", extra={"assignment_id": assignment_id})
            return _failed_result(assignment_id, channel, InternalError.wrap(exc).detail, ErrorKind.TRANSIENT)

    async def _notify_unsafe(self, assignment_id: str, channel: Channel) -> NotificationResult:
        assignment = await self._store.get(assignment_id)
        if assignment is None:
            raise NotFoundError(f"Assignment {assignment_id} not found")
        if not assignment.has_rider():
            raise NotFoundError(f"No rider assigned to {assignment_id}")

        rider = await self._riders.find_by_name(assignment.rider_name)
        if rider is None:
            raise NotFoundError(f"Rider {assignment.rider_name} not found in directory")

        log = LogContext(
            logger,
            assignment_id=assignment.id,
            request_id=assignment.request_id,
            rider=rider.name,
            channel=channel.value,
        )
        ctx = await load_context(assignment, self._store, self._details, self._config)

        sms_result: Optional[DeliveryResult] = None
        email_result: Optional[DeliveryResult] = None

        if channel.includes_sms:
            if not rider.phone:
                sms_result = DeliveryResult.failed(
                    f"No phone number on file for {rider.name}", attempts=0, kind=ErrorKind.VALIDATION
                )
            else:
                sms_result = await self._deliver(assignment, rider, Channel.SMS, rider.phone, compose_sms(ctx))

        if channel.includes_email:
            if not rider.email:
                email_result = DeliveryResult.failed(
                    f"No email address on file for {rider.name}", attempts=0, kind=ErrorKind.VALIDATION
                )
            else:
                subject, body = compose_email(ctx)
                email_result = await self._deliver(
                    assignment, rider, Channel.EMAIL, rider.email, body, subject=subject
                )

        results = [r for r in (sms_result, email_result) if r is not None]
        success = all(r.success for r in results)
        message = _result_message(channel, sms_result, email_result)
        if success:
            log.info(f"Notification sent: {message}")
        else:
            log.warning(f"Notification incomplete: {message}")

        return NotificationResult(
            assignment_id=assignment.id,
            channel=channel,
            success=success,
            message=message,
            sms=sms_result,
            email=email_result,
        )

    async def _deliver(
            self,
            assignment: Assignment,
            rider: Rider,
            channel: Channel,
            address: str,
            body: str,
            *,
            subject: Optional[str] = None,
    ) -> DeliveryResult:
        delivery = await self._adapter.send(address, body, channel, subject=subject)
        sent_at = self._clock()

        if delivery.attempts > 0:
            await self._track(OutboundMessage.from_delivery(
                delivery,
                recipient_address=address,
                channel=channel,
                body=body,
                subject=subject,
                assignment_id=assignment.id,
                rider_name=rider.name,
                sent_at=sent_at,
            ))

        if delivery.success:
            try:
                await self._recorder.record(assignment.id, channel, sent_at)
            except Exception:
                NotifyMetrics.database_error("record_send")
                logger.exception(f"Sent {channel.value} for {assignment.id} but could not record it")
        return delivery

    async def _track(self, entry: OutboundMessage) -> None:
        try:
            await self._tracking.record_outbound(entry)
        except Exception:
            # The message already left; a tracking failure must not turn it into a failed send
            logger.exception(
                f"Tracking log write failed for {entry.channel.value} to assignment {entry.assignment_id}"
            )

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def send_batch(
            self,
            targets: Sequence[Union[str, Assignment]],
            channel: Channel,
            label: str,
    ) -> BatchResult:
        """
        Notify every target in order.  For ``Both`` the SMS and the email
        outcome of a target are counted separately.  A pacing pause follows
        every ``pacing_block_size`` provider sends (except after the last
        target); a target's SMS and email are never split by a pause, so a
        block may overshoot by one send, carried into the next block.
        """
        cfg = self._config
        batch = BatchResult(label=label, total_targets=len(targets))
        sends_in_block = 0

        for index, target in enumerate(targets):
            assignment_id = target.id if isinstance(target, Assignment) else str(target)
            result = await self._notify(assignment_id, channel)
            rider_name, request_id = await self._describe(target, assignment_id)

            for ch, delivery in ((Channel.SMS, result.sms), (Channel.EMAIL, result.email)):
                if delivery is None:
                    continue
                if delivery.attempts > 0:
                    sends_in_block += 1
                if delivery.success:
                    batch.successful += 1
                    continue
                batch.failed += 1
                if len(batch.errors) < cfg.batch_error_sample_size:
                    batch.errors.append(f"{ch.value} to {rider_name} ({request_id}): {delivery.error_message}")

            is_last = index == len(targets) - 1
            if cfg.pacing_block_size > 0 and sends_in_block >= cfg.pacing_block_size and not is_last:
                await self._sleep(cfg.pacing_pause_seconds)
                sends_in_block %= cfg.pacing_block_size

        NotifyMetrics.batch_completed(label)
        self._activity.record(f"Bulk {channel.value} ({label}): {batch.successful} sent, {batch.failed} failed")
        logger.info(f"Batch done: {batch.message}")
        return batch

    async def _describe(self, target: Union[str, Assignment], assignment_id: str) -> tuple[str, str]:
        """Rider name and request id for an error line."""
        assignment = target if isinstance(target, Assignment) else None
        if assignment is None:
            try:
                assignment = await self._store.get(assignment_id)
            except Exception:
                logger.exception(f"Could not reload {assignment_id} for error reporting")
        if assignment is None:
            return assignment_id, "-"
        return (assignment.rider_name or "no rider"), (assignment.request_id or "-")

    async def dispatch(self, ids_or_filter: Union[str, Sequence[str]], channel: Channel) -> BatchResult:
        """
        Bulk entry point: an explicit list of assignment ids, or the name of a
        preset ("today", "week", "pending", "assigned").
        """
        if isinstance(ids_or_filter, str):
            preset = ids_or_filter.strip().lower()
            label = f"{preset} assignments"
            if preset not in PRESETS:
                return BatchResult(label=label, errors=[f"Unknown filter: {ids_or_filter}"])
            try:
                assignments = await self._reader.list()
            except Exception as exc:
                logger.exception("Could not list assignments for dispatch")
                return BatchResult(label=label, errors=[InternalError.wrap(exc).detail])
            targets: Sequence[Union[str, Assignment]] = select(assignments, preset, self._clock().date())
        else:
            targets = [str(i) for i in ids_or_filter]
            label = f"{len(targets)} selected assignments"

        return await self.send_batch(targets, channel, label)

    async def dispatch_request(self, request_id: str, channel: Channel) -> BatchResult:
        """Notify every rider on one request."""
        label = f"request {request_id}"
        try:
            assignments = await self._store.list_for_request(request_id)
        except Exception as exc:
            logger.exception(f"Could not list assignments for request {request_id}")
            return BatchResult(label=label, errors=[InternalError.wrap(exc).detail])

        targets = [a for a in assignments if a.has_rider() and not a.is_terminal()]
        return await self.send_batch(targets, channel, label)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def get_notification_stats(self) -> NotificationStats:
        try:
            assignments = await self._reader.list()
        except Exception:
            logger.exception("Could not compute notification stats")
            return NotificationStats()

        now = self._clock()
        stats = NotificationStats()
        for a in assignments:
            if not a.has_rider():
                continue
            stats.total_eligible += 1
            active = a.status in ACTIVE_STATUSES
            if active and a.notified_at is None:
                stats.unnotified_assigned += 1
                if not a.has_any_notification():
                    stats.pending += 1
            if _same_day(a.sms_sent_at, now):
                stats.sms_today += 1
            if _same_day(a.email_sent_at, now):
                stats.email_today += 1
        return stats

    @staticmethod
    def notification_status(assignment: Assignment) -> NotificationStatus:
        return notification_status(assignment)

    async def notification_status_for(self, assignment_id: str) -> NotificationStatus:
        """
        Raises:
            NotFoundError: no such assignment
        """
        assignment = await self._store.get(assignment_id)
        if assignment is None:
            raise NotFoundError(f"Assignment {assignment_id} not found")
        return notification_status(assignment)


def _same_day(ts: Optional[datetime], now: datetime) -> bool:
    if ts is None:
        return False
    if ts.tzinfo is not None and now.tzinfo is not None:
        ts = ts.astimezone(now.tzinfo)
    return ts.date() == now.date()


def _failed_result(assignment_id: str, channel: Channel, message: str, kind: ErrorKind) -> NotificationResult:
    """Same failure on every channel the caller asked for."""
    failure = DeliveryResult.failed(message, attempts=0, kind=kind)
    return NotificationResult(
        assignment_id=assignment_id,
        channel=channel,
        success=False,
        message=message,
        sms=failure if channel.includes_sms else None,
        email=failure if channel.includes_email else None,
    )


def _result_message(
        channel: Channel,
        sms: Optional[DeliveryResult],
        email: Optional[DeliveryResult],
) -> str:
    if channel == Channel.BOTH:
        return (
            f"SMS: {'Sent' if sms and sms.success else 'Failed'}, "
            f"Email: {'Sent' if email and email.success else 'Failed'}"
        )
    result = sms if channel == Channel.SMS else email
    if result and result.success:
        return f"{channel.value} sent successfully"
    return f"{channel.value} failed: {result.error_message if result else 'not attempted'}"
