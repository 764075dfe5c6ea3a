# ridernotify/core/domain.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Optional


# ============================================================================
# ENUMS
# ============================================================================

class AssignmentStatus(str, Enum):
    ASSIGNED = "Assigned"
    CONFIRMED = "Confirmed"
    DECLINED = "Declined"
    EN_ROUTE = "En Route"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    NO_SHOW = "No Show"


TERMINAL_STATUSES = frozenset({
    AssignmentStatus.COMPLETED,
    AssignmentStatus.CANCELLED,
    AssignmentStatus.NO_SHOW,
})

ACTIVE_STATUSES = frozenset({
    AssignmentStatus.ASSIGNED,
    AssignmentStatus.CONFIRMED,
    AssignmentStatus.EN_ROUTE,
    AssignmentStatus.IN_PROGRESS,
})

# The only status moves this service makes; everything else belongs to the scheduler.
ALLOWED_TRANSITIONS: dict[AssignmentStatus, frozenset[AssignmentStatus]] = {
    AssignmentStatus.ASSIGNED: frozenset({AssignmentStatus.CONFIRMED, AssignmentStatus.DECLINED}),
}


class Channel(str, Enum):
    SMS = "SMS"
    EMAIL = "Email"
    BOTH = "Both"

    @property
    def includes_sms(self) -> bool:
        return self in (Channel.SMS, Channel.BOTH)

    @property
    def includes_email(self) -> bool:
        return self in (Channel.EMAIL, Channel.BOTH)

    @classmethod
    def parse(cls, value: str) -> "Channel":
        """Case-insensitive lookup: "sms", "Email", "BOTH" ..."""
        for member in cls:
            if member.value.lower() == str(value).strip().lower():
                return member
        raise ValueError(f"Unknown channel: {value!r}")


class Intent(str, Enum):
    CONFIRM = "CONFIRM"
    DECLINE = "DECLINE"
    INFO_REQUEST = "INFO_REQUEST"
    GENERAL = "GENERAL"
    UNKNOWN_SENDER = "UNKNOWN_SENDER"


class NotificationStatus(str, Enum):
    """Display status derived from the notification timestamps of one assignment."""
    BOTH_SENT = "both_sent"
    SMS_SENT = "sms_sent"
    EMAIL_SENT = "email_sent"
    NOTIFIED = "notified"
    PENDING = "pending"
    NO_RIDER = "no_rider"


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


# Fields the notification engine is allowed to write on an assignment
SMS_SENT_AT = "sms_sent_at"
EMAIL_SENT_AT = "email_sent_at"
NOTIFIED_AT = "notified_at"
STATUS = "status"
WRITABLE_FIELDS = frozenset({SMS_SENT_AT, EMAIL_SENT_AT, NOTIFIED_AT, STATUS})


# ============================================================================
# RECORDS FROM COLLABORATORS
# ============================================================================

@dataclass
class Assignment:
    """
    One scheduled escort task bound to one rider and one request.

    Rows are created and deleted by the external scheduler; the notification
    engine only writes the three timestamps and, for inbound replies, ``status``.
    """
    id: str
    request_id: str
    rider_name: Optional[str] = None
    event_date: Optional[date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    start_location: Optional[str] = None
    end_location: Optional[str] = None
    status: AssignmentStatus = AssignmentStatus.ASSIGNED
    notified_at: Optional[datetime] = None
    sms_sent_at: Optional[datetime] = None
    email_sent_at: Optional[datetime] = None
    notes: Optional[str] = None

    def has_rider(self) -> bool:
        return bool(self.rider_name and self.rider_name.strip())

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def has_any_notification(self) -> bool:
        return any((self.notified_at, self.sms_sent_at, self.email_sent_at))


@dataclass
class Rider:
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None


@dataclass
class RequestDetails:
    """Enrichment for a request, used only to compose richer messages."""
    request_id: str
    notes: Optional[str] = None
    courtesy: bool = False
    special_requirements: Optional[str] = None
    requester_name: Optional[str] = None
    request_type: Optional[str] = None


# ============================================================================
# DELIVERY
# ============================================================================

@dataclass
class DeliveryResult:
    success: bool
    external_id: Optional[str] = None
    error_message: Optional[str] = None
    attempts: int = 0
    error_kind: Optional[ErrorKind] = None

    @classmethod
    def sent(cls, external_id: Optional[str], attempts: int) -> "DeliveryResult":
        return cls(success=True, external_id=external_id, attempts=attempts)

    @classmethod
    def failed(cls, error_message: str, attempts: int, kind: ErrorKind) -> "DeliveryResult":
        return cls(success=False, error_message=error_message, attempts=attempts, error_kind=kind)


@dataclass
class OutboundMessage:
    """One send attempt as written to the tracking log."""
    recipient_address: str
    channel: Channel
    body: str
    result: str  # "sent" | "failed"
    subject: Optional[str] = None
    assignment_id: Optional[str] = None
    rider_name: Optional[str] = None
    external_id: Optional[str] = None
    error: Optional[str] = None
    attempts: int = 0
    sent_at: Optional[datetime] = None

    @classmethod
    def from_delivery(
            cls,
            delivery: DeliveryResult,
            *,
            recipient_address: str,
            channel: Channel,
            body: str,
            subject: Optional[str] = None,
            assignment_id: Optional[str] = None,
            rider_name: Optional[str] = None,
            sent_at: Optional[datetime] = None,
    ) -> "OutboundMessage":
        return cls(
            recipient_address=recipient_address,
            channel=channel,
            body=body,
            subject=subject,
            result="sent" if delivery.success else "failed",
            assignment_id=assignment_id,
            rider_name=rider_name,
            external_id=delivery.external_id,
            error=delivery.error_message,
            attempts=delivery.attempts,
            sent_at=sent_at,
        )


# ============================================================================
# INBOUND
# ============================================================================

@dataclass
class InboundPayload:
    """Normalized webhook form: From, Body, MessageSid, To."""
    from_address: str
    body: str
    external_message_id: Optional[str] = None
    to_address: Optional[str] = None


@dataclass
class InboundResponse:
    from_address: str
    body: str
    received_at: datetime
    classified_intent: Intent
    matched_rider_name: Optional[str] = None
    assignment_affected: Optional[str] = None
    auto_reply_sent: bool = False
    external_message_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class AckResponse:
    """
    What the webhook route hands back to the provider.

    ``ok`` is always True: the provider must never see an error status.
    ``intent`` is None for a duplicate delivery that was not reprocessed.
    """
    intent: Optional[Intent]
    ok: bool = True
    auto_reply_sent: bool = False
    reply_body: Optional[str] = None
    assignment_id: Optional[str] = None
    duplicate: bool = False


# ============================================================================
# RESULTS
# ============================================================================

@dataclass
class RecordResult:
    assignment_id: str
    updated: bool
    fields: list[str] = field(default_factory=list)
    message: str = ""


@dataclass
class NotificationResult:
    assignment_id: str
    channel: Channel
    success: bool
    message: str
    sms: Optional[DeliveryResult] = None
    email: Optional[DeliveryResult] = None


@dataclass
class BatchResult:
    label: str
    total_targets: int = 0
    successful: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        if self.total_targets == 0:
            if self.errors:
                return f"{self.label}: not sent, {self.errors[0]}"
            return f"{self.label}: no assignments to notify"
        return f"{self.label}: {self.successful} sent, {self.failed} failed"


@dataclass
class NotificationStats:
    total_eligible: int = 0
    pending: int = 0
    unnotified_assigned: int = 0
    sms_today: int = 0
    email_today: int = 0
