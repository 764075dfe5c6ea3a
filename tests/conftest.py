# tests/conftest.py
"""Pytest configuration and fixtures"""
import json
import pytest
import sys
from datetime import datetime, time, timezone
from pathlib import Path
from unittest.mock import MagicMock

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from ridernotify.core.domain import Assignment, AssignmentStatus, RequestDetails, Rider  # noqa: E402

FIXED_NOW = datetime(2025, 3, 14, 15, 0, tzinfo=timezone.utc)
TODAY = FIXED_NOW.date()


# ============================================================================
# Fakes
# ============================================================================

class FakeSmsGateway:
    """
    Scripted SMS provider.

    ``outcomes`` are consumed one per call: an exception instance is raised,
    anything else is returned as the message sid.  ``failures`` maps an E.164
    number to an exception raised on every call to that number.
    """

    def __init__(self, outcomes=None, failures=None):
        self.outcomes = list(outcomes or [])
        self.failures = dict(failures or {})
        self.calls: list[tuple[str, str]] = []

    async def send_sms(self, to_e164: str, body: str) -> str:
        self.calls.append((to_e164, body))
        if to_e164 in self.failures:
            raise self.failures[to_e164]
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return f"SM{len(self.calls):04d}"


class FakeEmailGateway:
    def __init__(self, outcomes=None, failures=None):
        self.outcomes = list(outcomes or [])
        self.failures = dict(failures or {})
        self.calls: list[tuple[str, str, str]] = []

    async def send_email(self, to: str, subject: str, body: str):
        self.calls.append((to, subject, body))
        if to in self.failures:
            raise self.failures[to]
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        return f"<msg-{len(self.calls)}@test>"


class FakeHttpResponse:
    """Async context manager standing in for an aiohttp response."""

    def __init__(self, status: int, body: str):
        self.status = status
        self._body = body

    async def text(self):
        return self._body

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


def fake_http_session(status: int = 201, body=None, raises: Exception | None = None):
    session = MagicMock()
    if raises is not None:
        session.post.side_effect = raises
    else:
        text = body if isinstance(body, str) else json.dumps(body or {})
        session.post.return_value = FakeHttpResponse(status, text)
    return session


class RecordingSleep:
    """Stands in for asyncio.sleep; remembers every requested pause."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def make_assignment(assignment_id: str, rider_name: str | None = "Alex Rivera", **kwargs) -> Assignment:
    defaults = dict(
        request_id="REQ-100",
        event_date=TODAY,
        start_time=time(9, 30),
        end_time=time(11, 0),
        start_location="City Hall",
        end_location="Memorial Park",
        status=AssignmentStatus.ASSIGNED,
    )
    defaults.update(kwargs)
    return Assignment(id=assignment_id, rider_name=rider_name, **defaults)


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def fixed_now():
    return FIXED_NOW


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def sleeps():
    return RecordingSleep()


@pytest.fixture
def sms_gateway():
    return FakeSmsGateway()


@pytest.fixture
def email_gateway():
    return FakeEmailGateway()


@pytest.fixture
def riders():
    from ridernotify.infra.memory_repos import InMemoryRiderDirectory

    return InMemoryRiderDirectory([
        Rider(name="Alex Rivera", phone="(555) 123-4567", email="alex@example.com"),
        Rider(name="Sam Chen", phone="555.987.6543", email="sam@example.com"),
        Rider(name="Jordan Park", phone=None, email="jordan@example.com"),
        Rider(name="Casey Ortiz", phone="5552223333", email=None),
    ])


@pytest.fixture
def store():
    from ridernotify.infra.memory_repos import InMemoryAssignmentStore

    return InMemoryAssignmentStore([make_assignment("ASG-001")])


@pytest.fixture
def request_details():
    from ridernotify.infra.memory_repos import InMemoryRequestDetails

    return InMemoryRequestDetails([
        RequestDetails(request_id="REQ-100", courtesy=True, requester_name="Parks Department"),
    ])


@pytest.fixture
def tracking():
    from ridernotify.infra.memory_repos import InMemoryTrackingLog

    return InMemoryTrackingLog()


@pytest.fixture
def activity():
    from ridernotify.infra.activity_log import MemoryActivityLog

    return MemoryActivityLog()


@pytest.fixture
def adapter(sms_gateway, email_gateway, sleeps):
    from ridernotify.infra.backoff import BackoffPolicy
    from ridernotify.infra.delivery import DeliveryGatewayAdapter

    return DeliveryGatewayAdapter(
        sms_gateway,
        email_gateway,
        BackoffPolicy(max_retries=3, base_delay=2.0),
        timeout_seconds=None,
        sleep=sleeps,
    )


@pytest.fixture
def recorder(store):
    from ridernotify.core.status_recorder import StatusRecorder

    return StatusRecorder(store)


@pytest.fixture
def engine_config():
    from ridernotify.core.engine_config import EngineConfig

    return EngineConfig(public_base_url="https://escorts.example.com")


@pytest.fixture
def orchestrator(store, riders, request_details, adapter, recorder, tracking, activity, engine_config, clock, sleeps):
    from ridernotify.core.orchestrator import DispatchOrchestrator

    return DispatchOrchestrator(
        store, riders, request_details, adapter, recorder, tracking, activity, engine_config,
        clock=clock, sleep=sleeps,
    )


@pytest.fixture
def inbound_handler(store, riders, request_details, adapter, recorder, tracking, activity, engine_config, clock):
    from ridernotify.core.inbound import InboundResponseHandler

    return InboundResponseHandler(
        store, riders, request_details, adapter, recorder, tracking, activity, engine_config,
        clock=clock,
    )


@pytest.fixture
def sample_twilio_form_data():
    """Sample Twilio inbound webhook form data"""
    return {
        "From": "+15551234567",
        "To": "+15550001111",
        "Body": "YES",
        "MessageSid": "SM1234567890abcdef",
        "NumMedia": "0",
        "AccountSid": "AC1234567890abcdef",
    }


# ============================================================================
# HTTP app
# ============================================================================

ADMIN_TOKEN = "aB3cD5eF7gH9iJ1kL3mN5oP7qR9sT1uX"
TWILIO_AUTH_TOKEN = "twilio-test-auth-token"
SMS_WEBHOOK_URL = "https://notify.example.com/webhooks/twilio/sms"
STATUS_WEBHOOK_URL = "https://notify.example.com/webhooks/twilio/status"


class AppHarness:
    """FastAPI app wired to in-memory stores and fake gateways."""

    def __init__(self, **overrides):
        from fastapi.testclient import TestClient

        from ridernotify.bootstrap import build_services
        from ridernotify.config import Settings
        from ridernotify.infra.memory_repos import (
            InMemoryAssignmentStore,
            InMemoryRequestDetails,
            InMemoryRiderDirectory,
            InMemoryTrackingLog,
        )
        from ridernotify.transport.http_app import create_app

        values = dict(
            _env_file=None,
            app_env="dev",
            storage_backend="memory",
            admin_token=ADMIN_TOKEN,
            twilio_auth_token=TWILIO_AUTH_TOKEN,
            twilio_webhook_url=SMS_WEBHOOK_URL,
            twilio_status_callback_url=STATUS_WEBHOOK_URL,
            require_webhook_validation=True,
            enable_request_logging=False,
            gateway_base_delay_seconds=0.0,
            pacing_pause_seconds=0.0,
        )
        values.update(overrides)
        self.settings = Settings(**values)

        self.store = InMemoryAssignmentStore([make_assignment("ASG-001", event_date=datetime.now(timezone.utc).date())])
        self.riders = InMemoryRiderDirectory([
            Rider(name="Alex Rivera", phone="(555) 123-4567", email="alex@example.com"),
        ])
        self.tracking = InMemoryTrackingLog()
        self.sms = FakeSmsGateway()
        self.email = FakeEmailGateway()
        self.services = build_services(
            self.settings,
            stores=(self.store, self.riders, InMemoryRequestDetails(), self.tracking),
            gateways=(self.sms, self.email),
        )
        self.app = create_app(self.settings, self.services, configure_logging=False)
        self.client = TestClient(self.app)

    @property
    def admin_headers(self) -> dict:
        return {"Authorization": f"Bearer {ADMIN_TOKEN}"}

    def signed_post(self, path: str, url: str, form: dict):
        from twilio.request_validator import RequestValidator

        signature = RequestValidator(TWILIO_AUTH_TOKEN).compute_signature(url, form)
        return self.client.post(path, data=form, headers={"X-Twilio-Signature": signature})


@pytest.fixture
def harness():
    from ridernotify.infra.metrics import get_metrics_collector

    get_metrics_collector().reset()
    return AppHarness()
