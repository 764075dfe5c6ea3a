# tests/test_admin_routes.py
"""Admin dispatch endpoints and their bearer-token guard."""
from __future__ import annotations

import pytest

from conftest import AppHarness


class TestAuth:
    def test_health_is_public(self, harness):
        resp = harness.client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "healthy"}

    def test_missing_token(self, harness):
        resp = harness.client.post("/admin/dispatch", json={"filter": "pending"})
        assert resp.status_code == 401
        assert resp.json() == {"error": "Authentication required"}
        assert harness.sms.calls == []

    def test_wrong_token(self, harness):
        resp = harness.client.post(
            "/admin/dispatch", json={"filter": "pending"}, headers={"Authorization": "Bearer nope"}
        )
        assert resp.status_code == 401

    def test_unconfigured_token_refuses(self):
        harness = AppHarness(admin_token=None)
        resp = harness.client.get("/admin/notifications/stats", headers={"Authorization": "Bearer anything"})
        assert resp.status_code == 503

    def test_metrics_protected(self, harness):
        assert harness.client.get("/metrics").status_code == 401
        resp = harness.client.get("/metrics", headers=harness.admin_headers)
        assert resp.status_code == 200
        assert set(resp.json()) == {"counters", "histograms"}


class TestDispatch:
    def test_filter_dispatch(self, harness):
        resp = harness.client.post(
            "/admin/dispatch", json={"filter": "pending", "channel": "sms"}, headers=harness.admin_headers
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["label"] == "pending assignments"
        assert body["total_targets"] == 1
        assert body["successful"] == 1
        assert body["failed"] == 0
        assert body["message"] == "pending assignments: 1 sent, 0 failed"
        assert harness.store._rows["ASG-001"].sms_sent_at is not None

    def test_id_dispatch_reports_errors(self, harness):
        resp = harness.client.post(
            "/admin/dispatch",
            json={"assignment_ids": ["ASG-001", "ASG-404"], "channel": "SMS"},
            headers=harness.admin_headers,
        )

        body = resp.json()
        assert body["successful"] == 1
        assert body["failed"] == 1
        assert body["errors"] == ["SMS to ASG-404 (-): Assignment ASG-404 not found"]

    def test_unknown_filter(self, harness):
        resp = harness.client.post(
            "/admin/dispatch", json={"filter": "someday"}, headers=harness.admin_headers
        )
        assert resp.status_code == 200
        assert resp.json()["errors"] == ["Unknown filter: someday"]
        assert resp.json()["message"] == "someday assignments: not sent, Unknown filter: someday"

    @pytest.mark.parametrize("payload", [
        {},
        {"filter": "pending", "assignment_ids": ["ASG-001"]},
        {"filter": "pending", "channel": "fax"},
    ])
    def test_invalid_payload(self, harness, payload):
        resp = harness.client.post("/admin/dispatch", json=payload, headers=harness.admin_headers)
        assert resp.status_code == 422


class TestSingleAndRequest:
    def test_notify_assignment_both(self, harness):
        resp = harness.client.post(
            "/admin/assignments/ASG-001/notify", json={"channel": "both"}, headers=harness.admin_headers
        )

        body = resp.json()
        assert resp.status_code == 200
        assert body["success"] is True
        assert body["channel"] == "Both"
        assert body["message"] == "SMS: Sent, Email: Sent"
        assert body["sms"]["attempts"] == 1
        assert len(harness.email.calls) == 1

    def test_notify_missing_assignment(self, harness):
        resp = harness.client.post(
            "/admin/assignments/ASG-404/notify", json={"channel": "email"}, headers=harness.admin_headers
        )
        body = resp.json()
        assert body["success"] is False
        assert body["email"]["error_kind"] == "validation"

    def test_notify_request(self, harness):
        resp = harness.client.post(
            "/admin/requests/REQ-100/notify", json={}, headers=harness.admin_headers
        )
        assert resp.json()["label"] == "request REQ-100"
        assert resp.json()["successful"] == 1

    def test_notification_status(self, harness):
        resp = harness.client.get(
            "/admin/assignments/ASG-001/notification-status", headers=harness.admin_headers
        )
        assert resp.json() == {"assignment_id": "ASG-001", "status": "pending"}

    def test_notification_status_not_found(self, harness):
        resp = harness.client.get(
            "/admin/assignments/ASG-404/notification-status", headers=harness.admin_headers
        )
        assert resp.status_code == 404
        assert resp.json() == {"error": "Assignment ASG-404 not found"}


class TestStats:
    def test_stats_after_send(self, harness):
        harness.client.post(
            "/admin/assignments/ASG-001/notify", json={"channel": "sms"}, headers=harness.admin_headers
        )

        resp = harness.client.get("/admin/notifications/stats", headers=harness.admin_headers)

        body = resp.json()
        assert resp.status_code == 200
        assert body["total_eligible"] == 1
        assert body["pending"] == 0
        assert body["sms_today"] == 1
        assert "generated_at" in body
