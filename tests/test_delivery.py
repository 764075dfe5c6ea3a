# tests/test_delivery.py
"""Delivery adapter: validation, retry bounds, error classification."""
import asyncio

import pytest

from conftest import FakeEmailGateway, FakeSmsGateway, RecordingSleep, fake_http_session
from ridernotify.core.domain import Channel, ErrorKind
from ridernotify.core.errors import PermanentDeliveryError, TransientDeliveryError
from ridernotify.infra.backoff import BackoffPolicy
from ridernotify.infra.delivery import DEFAULT_EMAIL_SUBJECT, DeliveryGatewayAdapter
from ridernotify.infra.sms_gateway import TwilioSmsGateway


def _adapter(sms=None, email=None, policy=None, timeout=None):
    sleep = RecordingSleep()
    adapter = DeliveryGatewayAdapter(
        sms or FakeSmsGateway(),
        email or FakeEmailGateway(),
        policy or BackoffPolicy(max_retries=3, base_delay=2.0),
        timeout_seconds=timeout,
        sleep=sleep,
    )
    return adapter, sleep


class TestBackoffPolicy:
    def test_linear_delay(self):
        policy = BackoffPolicy(max_retries=3, base_delay=2.0)
        assert [policy.delay(n) for n in (1, 2, 3)] == [2.0, 4.0, 6.0]
        assert policy.max_attempts == 4

    def test_jitter_bounded(self):
        policy = BackoffPolicy(base_delay=1.0, jitter=0.5)
        assert policy.delay(1, rand=lambda: 1.0) == 1.5
        assert policy.delay(2, rand=lambda: 0.0) == 2.0


class TestSmsDelivery:
    @pytest.mark.asyncio
    async def test_success_first_attempt(self):
        sms = FakeSmsGateway(outcomes=["SM123"])
        adapter, sleep = _adapter(sms=sms)

        result = await adapter.send("(555) 123-4567", "hello", Channel.SMS)

        assert result.success is True
        assert result.external_id == "SM123"
        assert result.attempts == 1
        assert sms.calls == [("+15551234567", "hello")]
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_invalid_phone_makes_no_network_call(self):
        sms = FakeSmsGateway()
        adapter, _ = _adapter(sms=sms)

        result = await adapter.send("555-1234", "hello", Channel.SMS)

        assert result.success is False
        assert result.attempts == 0
        assert result.error_kind == ErrorKind.VALIDATION
        assert result.error_message == "Invalid phone number format"
        assert sms.calls == []

    @pytest.mark.asyncio
    async def test_server_errors_exhaust_retries(self):
        sms = FakeSmsGateway(outcomes=[TransientDeliveryError("Service unavailable", 500)] * 10)
        adapter, sleep = _adapter(sms=sms)

        result = await adapter.send("5551234567", "hello", Channel.SMS)

        assert result.success is False
        assert result.attempts == 4
        assert result.error_kind == ErrorKind.TRANSIENT
        assert result.error_message == "Service unavailable"
        assert len(sms.calls) == 4
        assert sleep.calls == [2.0, 4.0, 6.0]

    @pytest.mark.asyncio
    async def test_provider_http_500_exhausts_retries(self):
        session = fake_http_session(500, {"code": 20500, "message": "Internal Server Error"})
        twilio = TwilioSmsGateway("AC123", "token", "+15550001111", session=session)
        adapter, sleep = _adapter(sms=twilio, policy=BackoffPolicy(max_retries=2, base_delay=1.0))

        result = await adapter.send("5551234567", "hello", Channel.SMS)

        assert result.success is False
        assert result.attempts == 3
        assert result.error_kind == ErrorKind.TRANSIENT
        assert result.error_message == "Internal Server Error"
        assert session.post.call_count == 3
        assert sleep.calls == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_recovers_after_transient_error(self):
        sms = FakeSmsGateway(outcomes=[TransientDeliveryError("rate limited", 429), "SM999"])
        adapter, sleep = _adapter(sms=sms)

        result = await adapter.send("5551234567", "hello", Channel.SMS)

        assert result.success is True
        assert result.attempts == 2
        assert sleep.calls == [2.0]

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        sms = FakeSmsGateway(outcomes=[PermanentDeliveryError("The 'To' number is not a valid phone number.", 400)])
        adapter, sleep = _adapter(sms=sms)

        result = await adapter.send("5551234567", "hello", Channel.SMS)

        assert result.success is False
        assert result.attempts == 1
        assert result.error_kind == ErrorKind.PERMANENT
        assert "not a valid phone number" in result.error_message
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_zero_retries_means_one_attempt(self):
        sms = FakeSmsGateway(outcomes=[TransientDeliveryError("boom")] * 3)
        adapter, sleep = _adapter(sms=sms, policy=BackoffPolicy(max_retries=0))

        result = await adapter.send("5551234567", "hello", Channel.SMS)

        assert result.attempts == 1
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        class SlowSms:
            calls = 0

            async def send_sms(self, to, body):
                SlowSms.calls += 1
                await asyncio.sleep(1)
                return "never"

        adapter, sleep = _adapter(sms=SlowSms(), policy=BackoffPolicy(max_retries=1, base_delay=0.5), timeout=0.01)

        result = await adapter.send("5551234567", "hello", Channel.SMS)

        assert result.success is False
        assert result.attempts == 2
        assert result.error_kind == ErrorKind.TRANSIENT
        assert "timed out" in result.error_message
        assert sleep.calls == [0.5]

    @pytest.mark.asyncio
    async def test_both_channel_rejected(self):
        adapter, _ = _adapter()
        with pytest.raises(ValueError):
            await adapter.send("5551234567", "hello", Channel.BOTH)


class TestEmailDelivery:
    @pytest.mark.asyncio
    async def test_default_subject(self):
        email = FakeEmailGateway()
        adapter, _ = _adapter(email=email)

        result = await adapter.send("alex@example.com", "body", Channel.EMAIL)

        assert result.success is True
        assert email.calls == [("alex@example.com", DEFAULT_EMAIL_SUBJECT, "body")]

    @pytest.mark.asyncio
    async def test_invalid_email(self):
        email = FakeEmailGateway()
        adapter, _ = _adapter(email=email)

        result = await adapter.send("not-an-address", "body", Channel.EMAIL, subject="Hi")

        assert result.attempts == 0
        assert result.error_kind == ErrorKind.VALIDATION
        assert email.calls == []

    @pytest.mark.asyncio
    async def test_slow_smtp_not_cut_off_or_resent(self):
        class SlowEmail:
            calls = 0

            async def send_email(self, to, subject, body):
                SlowEmail.calls += 1
                await asyncio.sleep(0.05)
                return "<slow@test>"

        adapter, sleep = _adapter(email=SlowEmail(), timeout=0.01)

        result = await adapter.send("alex@example.com", "body", Channel.EMAIL, subject="Hi")

        assert result.success is True
        assert result.attempts == 1
        assert SlowEmail.calls == 1
        assert sleep.calls == []

    @pytest.mark.asyncio
    async def test_smtp_failure_retried(self):
        email = FakeEmailGateway(outcomes=[TransientDeliveryError("SMTPServerDisconnected"), "<ok@test>"])
        adapter, sleep = _adapter(email=email)

        result = await adapter.send("alex@example.com", "body", Channel.EMAIL, subject="Hi")

        assert result.success is True
        assert result.attempts == 2
        assert sleep.calls == [2.0]
