# tests/test_webhooks.py
"""Twilio webhook routes: signature validation, inbound replies, status callbacks."""
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from conftest import SMS_WEBHOOK_URL, STATUS_WEBHOOK_URL, AppHarness
from ridernotify.core.domain import AssignmentStatus
from ridernotify.infra.metrics import get_metrics_collector


@pytest.fixture
def form(sample_twilio_form_data):
    return dict(sample_twilio_form_data)


def _status(harness, assignment_id="ASG-001"):
    return harness.store._rows[assignment_id].status


class TestInboundSmsWebhook:
    def test_signed_confirm_updates_assignment(self, harness, form):
        resp = harness.signed_post("/webhooks/twilio/sms", SMS_WEBHOOK_URL, form)

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/xml")
        assert "<Response></Response>" in resp.text
        assert _status(harness) == AssignmentStatus.CONFIRMED
        assert len(harness.sms.calls) == 1
        assert harness.sms.calls[0][0] == "+15551234567"

    def test_missing_signature_rejected(self, harness, form):
        resp = harness.client.post("/webhooks/twilio/sms", data=form)

        assert resp.status_code == 403
        assert _status(harness) == AssignmentStatus.ASSIGNED
        assert get_metrics_collector().get_counter(
            "webhook_validation_failures_total", route="twilio_sms"
        ) == 1

    def test_forged_signature_rejected(self, harness, form):
        resp = harness.client.post(
            "/webhooks/twilio/sms", data=form, headers={"X-Twilio-Signature": "Zm9yZ2Vk"}
        )
        assert resp.status_code == 403
        assert harness.sms.calls == []

    def test_signature_over_different_url_rejected(self, harness, form):
        resp = harness.signed_post("/webhooks/twilio/sms", "https://evil.example.com/hook", form)
        assert resp.status_code == 403

    def test_unknown_sender_still_200(self, harness, form):
        form["From"] = "+15550009999"
        resp = harness.signed_post("/webhooks/twilio/sms", SMS_WEBHOOK_URL, form)

        assert resp.status_code == 200
        assert harness.sms.calls == []
        assert harness.tracking.inbound[0].classified_intent.value == "UNKNOWN_SENDER"

    def test_general_reply_still_200(self, harness, form):
        form["Body"] = "running late, will call"
        resp = harness.signed_post("/webhooks/twilio/sms", SMS_WEBHOOK_URL, form)
        assert resp.status_code == 200
        assert _status(harness) == AssignmentStatus.ASSIGNED

    def test_handler_crash_still_200(self, harness, form):
        harness.services.inbound.handle_inbound = AsyncMock(side_effect=RuntimeError("boom"))

        resp = harness.signed_post("/webhooks/twilio/sms", SMS_WEBHOOK_URL, form)

        assert resp.status_code == 200
        assert "<Response>" in resp.text

    def test_duplicate_delivery_processed_once(self, harness, form):
        form["Body"] = "DECLINE"
        harness.signed_post("/webhooks/twilio/sms", SMS_WEBHOOK_URL, form)
        resp = harness.signed_post("/webhooks/twilio/sms", SMS_WEBHOOK_URL, form)

        assert resp.status_code == 200
        assert _status(harness) == AssignmentStatus.DECLINED
        assert len(harness.sms.calls) == 1

    def test_validation_disabled(self, form):
        harness = AppHarness(require_webhook_validation=False)
        resp = harness.client.post("/webhooks/twilio/sms", data=form)
        assert resp.status_code == 200
        assert _status(harness) == AssignmentStatus.CONFIRMED

    def test_validation_without_auth_token(self, form):
        harness = AppHarness(twilio_auth_token=None)
        resp = harness.client.post("/webhooks/twilio/sms", data=form, headers={"X-Twilio-Signature": "x"})
        assert resp.status_code == 500


class TestStatusCallbackWebhook:
    def test_delivery_status_recorded(self, harness):
        form = {"MessageSid": "SMabc123", "MessageStatus": "undelivered", "ErrorCode": "30006"}

        resp = harness.signed_post("/webhooks/twilio/status", STATUS_WEBHOOK_URL, form)

        assert resp.status_code == 200
        assert harness.tracking.delivery_statuses == [{
            "external_id": "SMabc123",
            "status": "undelivered",
            "error_code": "30006",
            "received_at": None,
        }]

    def test_status_callback_is_not_an_inbound_reply(self, harness):
        form = {"MessageSid": "SMabc123", "MessageStatus": "delivered", "From": "+15551234567", "Body": "YES"}

        harness.signed_post("/webhooks/twilio/status", STATUS_WEBHOOK_URL, form)

        assert harness.tracking.inbound == []
        assert _status(harness) == AssignmentStatus.ASSIGNED

    def test_incomplete_callback_ignored(self, harness):
        resp = harness.signed_post("/webhooks/twilio/status", STATUS_WEBHOOK_URL, {"MessageSid": "SMabc"})
        assert resp.status_code == 200
        assert harness.tracking.delivery_statuses == []

    def test_storage_error_still_200(self, harness):
        harness.tracking.record_delivery_status = AsyncMock(side_effect=RuntimeError("db down"))
        form = {"MessageSid": "SMabc123", "MessageStatus": "delivered"}

        resp = harness.signed_post("/webhooks/twilio/status", STATUS_WEBHOOK_URL, form)

        assert resp.status_code == 200

    def test_status_signature_checked_against_status_url(self, harness):
        form = {"MessageSid": "SMabc123", "MessageStatus": "delivered"}
        resp = harness.signed_post("/webhooks/twilio/status", SMS_WEBHOOK_URL, form)
        assert resp.status_code == 403


class TestTwiml:
    def test_message_is_escaped(self):
        from ridernotify.transport.twilio_webhook import create_twiml_response

        xml = create_twiml_response("Tom & Jerry <3")
        assert "<Message>Tom &amp; Jerry &lt;3</Message>" in xml

    def test_empty_response(self):
        from ridernotify.transport.twilio_webhook import create_twiml_response

        assert create_twiml_response().endswith("<Response></Response>")
