# ridernotify/core/inbound.py
"""
Inbound Response Handler.

A rider's SMS reply goes through:

    resolve rider by phone -> classify -> transition (Assigned -> Confirmed /
    Declined) -> acknowledge through the delivery adapter -> append one
    InboundResponse to the tracking log

Nothing here raises to the webhook: every path ends in an AckResponse with
``ok=True`` so the provider never retries the callback.
"""
from __future__ import annotations

import re
from datetime import date
from typing import Optional

from ridernotify.core.composer import compose_ack, compose_info_reply
from ridernotify.core.domain import (
    ACTIVE_STATUSES,
    AckResponse,
    Assignment,
    AssignmentStatus,
    Channel,
    InboundPayload,
    InboundResponse,
    Intent,
    OutboundMessage,
    Rider,
)
from ridernotify.core.engine_config import EngineConfig
from ridernotify.core.errors import UnknownSenderError
from ridernotify.core.orchestrator import Clock, load_context, utc_now
from ridernotify.core.ports import (
    ActivityLog,
    AssignmentStore,
    RequestDetailsSource,
    RiderDirectory,
    TrackingLog,
)
from ridernotify.core.status_recorder import StatusRecorder
from ridernotify.infra.logging_config import get_logger, mask_phone
from ridernotify.infra.metrics import NotifyMetrics

logger = get_logger(__name__)

# Keywords match any word of the reply ("I confirm", "confirmed"); yes/no
# only lead the reply; single letters only stand alone ("n/a" is not a decline).
CONFIRM_KEYWORD = "confirm"
DECLINE_KEYWORD = "decline"
CONFIRM_WORDS = frozenset({"yes", "y"})
DECLINE_WORDS = frozenset({"no", "n"})
INFO_WORDS = ("info", "details")

_WORD = re.compile(r"[a-z0-9']+")

_TARGET_STATUS = {
    Intent.CONFIRM: AssignmentStatus.CONFIRMED,
    Intent.DECLINE: AssignmentStatus.DECLINED,
}


def classify(body: Optional[str]) -> Intent:
    """
    "YES", "Confirm!", "I confirm", "y" -> CONFIRM
    "no", "Please decline", "N"        -> DECLINE
    anything mentioning info/details    -> INFO_REQUEST
    everything else ("n/a" included)    -> GENERAL
    """
    text = (body or "").strip().lower()
    words = _WORD.findall(text)
    first = words[0] if words else ""
    lead = first if len(first) > 1 or len(words) == 1 else ""

    if lead in CONFIRM_WORDS or any(w.startswith(CONFIRM_KEYWORD) for w in words):
        return Intent.CONFIRM
    if lead in DECLINE_WORDS or any(w.startswith(DECLINE_KEYWORD) for w in words):
        return Intent.DECLINE
    if any(w in text for w in INFO_WORDS):
        return Intent.INFO_REQUEST
    return Intent.GENERAL


def _earliest(assignments: list[Assignment]) -> Optional[Assignment]:
    if not assignments:
        return None
    return min(assignments, key=lambda a: (a.event_date or date.max, a.id))


class InboundResponseHandler:
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
            clock: Clock = utc_now,
    ):
        self._store = store
        self._riders = riders
        self._details = request_details
        self._adapter = adapter
        self._recorder = recorder
        self._tracking = tracking
        self._activity = activity
        self._config = config or EngineConfig()
        self._clock = clock

    async def handle_inbound(self, payload: InboundPayload) -> AckResponse:
        response = InboundResponse(
            from_address=payload.from_address,
            body=payload.body or "",
            received_at=self._clock(),
            classified_intent=Intent.GENERAL,
            external_message_id=payload.external_message_id,
        )

        try:
            if payload.external_message_id and await self._tracking.has_inbound(payload.external_message_id):
                logger.info(f"Duplicate inbound delivery ignored: sid={payload.external_message_id[:10]}***")
                return AckResponse(intent=None, duplicate=True)
        except Exception:
            logger.exception("Duplicate check failed; processing the message anyway")

        try:
            ack = await self._process(payload, response)
        except UnknownSenderError:
            response.classified_intent = Intent.UNKNOWN_SENDER
            logger.info(f"Inbound from unknown sender {mask_phone(payload.from_address)}")
            self._activity.record(f"SMS from unregistered number {mask_phone(payload.from_address)} ignored")
            ack = AckResponse(intent=Intent.UNKNOWN_SENDER)
        except Exception as exc:
            logger.exception(f"Inbound processing failed for {mask_phone(payload.from_address)}")
            response.error = f"{type(exc).__name__}: {exc}"
            ack = AckResponse(intent=response.classified_intent)

        NotifyMetrics.inbound_classified(response.classified_intent.value)
        try:
            await self._tracking.record_inbound(response)
        except Exception:
            logger.exception("Tracking log write failed for inbound response")
        return ack

    async def _process(self, payload: InboundPayload, response: InboundResponse) -> AckResponse:
        rider = await self._riders.find_by_phone(payload.from_address)
        if rider is None:
            raise UnknownSenderError(f"No rider with phone {mask_phone(payload.from_address)}")

        response.matched_rider_name = rider.name
        intent = classify(payload.body)
        response.classified_intent = intent

        if intent in _TARGET_STATUS:
            return await self._transition(rider, intent, payload, response)
        if intent == Intent.INFO_REQUEST:
            return await self._info(rider, payload, response)

        self._activity.record(
            f"Reply from {rider.name} needs operator follow-up: {response.body!r}",
            rider=rider.name,
        )
        return AckResponse(intent=Intent.GENERAL)

    async def _transition(
            self,
            rider: Rider,
            intent: Intent,
            payload: InboundPayload,
            response: InboundResponse,
    ) -> AckResponse:
        new_status = _TARGET_STATUS[intent]
        mine = await self._store.list_for_rider(rider.name)

        target = _earliest([a for a in mine if a.status == AssignmentStatus.ASSIGNED])
        if target is not None:
            result = await self._recorder.set_status(target.id, new_status)
            if result.updated:
                response.assignment_affected = target.id
                self._activity.record(
                    f"{rider.name} {new_status.value.lower()} {target.id} by SMS",
                    assignment_id=target.id,
                    rider=rider.name,
                )
            else:
                logger.info(f"{intent.value} from {rider.name} left {target.id} unchanged: {result.message}")
        else:
            # Re-confirmation (or nothing open): same acknowledgement, no state change
            target = _earliest([a for a in mine if a.status == new_status])
            logger.info(f"{intent.value} from {rider.name}: no Assigned assignment, acknowledging only")

        ctx = None
        if target is not None:
            ctx = await load_context(target, self._store, self._details, self._config)
        reply = compose_ack(intent, ctx)
        sent = await self._reply(payload.from_address, reply, rider, target)
        response.auto_reply_sent = sent
        return AckResponse(
            intent=intent,
            auto_reply_sent=sent,
            reply_body=reply,
            assignment_id=response.assignment_affected,
        )

    async def _info(self, rider: Rider, payload: InboundPayload, response: InboundResponse) -> AckResponse:
        mine = await self._store.list_for_rider(rider.name)
        active = [a for a in mine if a.status in ACTIVE_STATUSES]
        today = self._clock().date()
        upcoming = [a for a in active if a.event_date is None or a.event_date >= today]
        target = _earliest(upcoming) or _earliest(active)

        ctx = None
        if target is not None:
            ctx = await load_context(target, self._store, self._details, self._config)
        reply = compose_info_reply(ctx)
        sent = await self._reply(payload.from_address, reply, rider, target)
        response.auto_reply_sent = sent
        return AckResponse(
            intent=Intent.INFO_REQUEST,
            auto_reply_sent=sent,
            reply_body=reply,
            assignment_id=target.id if target else None,
        )

    async def _reply(self, to: str, body: str, rider: Rider, assignment: Optional[Assignment]) -> bool:
        delivery = await self._adapter.send(to, body, Channel.SMS)
        if delivery.attempts > 0:
            try:
                await self._tracking.record_outbound(OutboundMessage.from_delivery(
                    delivery,
                    recipient_address=to,
                    channel=Channel.SMS,
                    body=body,
                    assignment_id=assignment.id if assignment else None,
                    rider_name=rider.name,
                    sent_at=self._clock(),
                ))
            except Exception:
                logger.exception("Tracking log write failed for acknowledgement")
        if not delivery.success:
            logger.warning(f"Acknowledgement to {rider.name} failed: {delivery.error_message}")
        return delivery.success
