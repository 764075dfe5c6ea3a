# ridernotify/core/ports.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Protocol

from ridernotify.core.domain import (
    Assignment,
    InboundResponse,
    OutboundMessage,
    RequestDetails,
    Rider,
)


# ============================================================================
# COLLABORATOR STORES
# ============================================================================

class AssignmentStore(Protocol):
    async def get(self, assignment_id: str) -> Optional[Assignment]: ...

    async def list(self) -> list[Assignment]:
        """All assignments, ordered by event date then id."""
        ...

    async def list_for_request(self, request_id: str) -> list[Assignment]: ...

    async def list_for_rider(self, rider_name: str) -> list[Assignment]: ...

    async def set_field(self, assignment_id: str, field: str, value: Any) -> bool:
        """
        Write one field by primary key.
        True  => row existed and was updated
        False => no such assignment
        """
        ...


class RiderDirectory(Protocol):
    async def find_by_phone(self, phone: str) -> Optional[Rider]:
        """Lookup by normalized 10-digit phone."""
        ...

    async def find_by_name(self, name: str) -> Optional[Rider]: ...


class RequestDetailsSource(Protocol):
    async def get(self, request_id: str) -> Optional[RequestDetails]: ...


class ActivityLog(Protocol):
    def record(self, text: str, **fields: Any) -> None: ...


class TrackingLog(Protocol):
    async def record_outbound(self, entry: OutboundMessage) -> None: ...

    async def record_inbound(self, response: InboundResponse) -> None: ...

    async def record_delivery_status(
            self,
            external_id: str,
            status: str,
            error_code: Optional[str] = None,
            received_at: Optional[datetime] = None,
    ) -> None: ...

    async def has_inbound(self, external_message_id: str) -> bool: ...


class ReadCache(Protocol):
    def invalidate(self) -> None: ...


# ============================================================================
# PROVIDER GATEWAYS
# ============================================================================

class SmsGateway(Protocol):
    async def send_sms(self, to_e164: str, body: str) -> str:
        """Return the provider message id; raise DeliveryError on failure."""
        ...


class EmailGateway(Protocol):
    async def send_email(self, to: str, subject: str, body: str) -> Optional[str]: ...
