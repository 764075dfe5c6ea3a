# ridernotify/infra/delivery.py
"""
Delivery Gateway Adapter: one message, one channel, bounded retries.

The adapter validates the address, hands the message to the SMS or email
provider and retries transient failures on an iterative loop driven by a
BackoffPolicy.  It never touches the assignment store; recording the outcome
is the caller's job.
"""
from __future__ import annotations

import asyncio
from typing import Optional

from ridernotify.core.domain import Channel, DeliveryResult, ErrorKind
from ridernotify.core.errors import (
    PermanentDeliveryError,
    TransientDeliveryError,
    ValidationError,
)
from ridernotify.core.phone import to_e164, validate_email
from ridernotify.core.ports import EmailGateway, SmsGateway
from ridernotify.infra.backoff import BackoffPolicy, Sleep
from ridernotify.infra.logging_config import get_logger
from ridernotify.infra.metrics import NotifyMetrics

logger = get_logger(__name__)

DEFAULT_EMAIL_SUBJECT = "Assignment Notification"


class DeliveryGatewayAdapter:
    def __init__(
            self,
            sms_gateway: SmsGateway,
            email_gateway: EmailGateway,
            policy: BackoffPolicy | None = None,
            *,
            timeout_seconds: float | None = 15.0,
            sleep: Sleep = asyncio.sleep,
    ):
        self._sms = sms_gateway
        self._email = email_gateway
        self._policy = policy or BackoffPolicy()
        self._timeout = timeout_seconds
        self._sleep = sleep

    async def send(
            self,
            address: Optional[str],
            body: str,
            channel: Channel,
            *,
            subject: Optional[str] = None,
    ) -> DeliveryResult:
        """
        Deliver ``body`` to ``address`` over ``channel`` (SMS or Email).

        Returns a DeliveryResult; provider errors never raise out of here.
        - malformed address      -> validation failure, 0 attempts
        - 5xx / 429 / timeout    -> retried, then transient failure
        - other 4xx              -> permanent failure after 1 attempt
        """
        if channel == Channel.BOTH:
            raise ValueError("send() takes a single channel; split Both at the caller")

        try:
            if channel == Channel.SMS:
                target = to_e164(address or "")
            else:
                target = validate_email(address)
        except ValidationError as exc:
            NotifyMetrics.send_failed(channel.value, ErrorKind.VALIDATION.value)
            logger.info(f"{channel.value} not sent, invalid address: {exc.detail}")
            return DeliveryResult.failed(exc.detail, attempts=0, kind=ErrorKind.VALIDATION)

        last_error = "Unknown delivery error"
        attempts = 0
        for attempt in range(1, self._policy.max_attempts + 1):
            attempts = attempt
            NotifyMetrics.send_attempt(channel.value)
            try:
                with NotifyMetrics.track_send_time(channel.value):
                    external_id = await self._with_timeout(
                        self._send_once(target, body, channel, subject), channel
                    )
                NotifyMetrics.send_succeeded(channel.value)
                if attempt > 1:
                    logger.info(f"{channel.value} delivered on attempt {attempt}")
                return DeliveryResult.sent(external_id, attempts=attempt)

            except PermanentDeliveryError as exc:
                NotifyMetrics.send_failed(channel.value, ErrorKind.PERMANENT.value)
                return DeliveryResult.failed(exc.detail, attempts=attempt, kind=ErrorKind.PERMANENT)

            except TransientDeliveryError as exc:
                last_error = exc.detail
            except asyncio.TimeoutError:
                last_error = f"{channel.value} provider call timed out after {self._timeout}s"

            if attempt < self._policy.max_attempts:
                delay = self._policy.delay(attempt)
                NotifyMetrics.send_retried(channel.value)
                logger.warning(
                    f"{channel.value} attempt {attempt}/{self._policy.max_attempts} failed "
                    f"({last_error}); retrying in {delay:.1f}s"
                )
                await self._sleep(delay)

        NotifyMetrics.send_failed(channel.value, ErrorKind.TRANSIENT.value)
        logger.error(f"{channel.value} failed after {attempts} attempts: {last_error}")
        return DeliveryResult.failed(last_error, attempts=attempts, kind=ErrorKind.TRANSIENT)

    async def _send_once(
            self,
            target: str,
            body: str,
            channel: Channel,
            subject: Optional[str],
    ) -> Optional[str]:
        if channel == Channel.SMS:
            return await self._sms.send_sms(target, body)
        return await self._email.send_email(target, subject or DEFAULT_EMAIL_SUBJECT, body)

    async def _with_timeout(self, coro, channel: Channel):
        # Email is bounded by the SMTP socket timeout: wait_for cannot stop the
        # executor thread, so a timed out send would still go out.
        if self._timeout is None or channel == Channel.EMAIL:
            return await coro
        return await asyncio.wait_for(coro, timeout=self._timeout)
