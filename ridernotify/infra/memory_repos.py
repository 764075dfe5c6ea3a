# ridernotify/infra/memory_repos.py
"""
In-process implementations of the collaborator ports.

Used when STORAGE_BACKEND=memory (local development, demos) and as the
fakes behind the test suite.  Data lives only as long as the process.
"""
from __future__ import annotations

import asyncio
import dataclasses
from datetime import date, datetime
from typing import Any, Iterable, Optional

from ridernotify.core.domain import (
    Assignment,
    AssignmentStatus,
    InboundResponse,
    OutboundMessage,
    RequestDetails,
    Rider,
    WRITABLE_FIELDS,
)
from ridernotify.core.phone import try_normalize_phone


def _sort_key(a: Assignment) -> tuple:
    return (a.event_date or date.max, a.id)


class InMemoryAssignmentStore:
    def __init__(self, assignments: Iterable[Assignment] = ()):
        self._rows: dict[str, Assignment] = {a.id: a for a in assignments}
        self._lock = asyncio.Lock()

    def add(self, assignment: Assignment) -> None:
        self._rows[assignment.id] = assignment

    async def get(self, assignment_id: str) -> Optional[Assignment]:
        row = self._rows.get(assignment_id)
        return dataclasses.replace(row) if row else None

    async def list(self) -> list[Assignment]:
        return [dataclasses.replace(a) for a in sorted(self._rows.values(), key=_sort_key)]

    async def list_for_request(self, request_id: str) -> list[Assignment]:
        return [a for a in await self.list() if a.request_id == request_id]

    async def list_for_rider(self, rider_name: str) -> list[Assignment]:
        wanted = rider_name.strip().lower()
        return [
            a for a in await self.list()
            if a.rider_name and a.rider_name.strip().lower() == wanted
        ]

    async def set_field(self, assignment_id: str, field: str, value: Any) -> bool:
        if field not in WRITABLE_FIELDS:
            raise ValueError(f"Field not writable: {field}")
        if field == "status":
            value = AssignmentStatus(value)
        async with self._lock:
            row = self._rows.get(assignment_id)
            if row is None:
                return False
            setattr(row, field, value)
            return True


class InMemoryRiderDirectory:
    def __init__(self, riders: Iterable[Rider] = ()):
        self._riders: list[Rider] = list(riders)

    def add(self, rider: Rider) -> None:
        self._riders.append(rider)

    async def find_by_phone(self, phone: str) -> Optional[Rider]:
        wanted = try_normalize_phone(phone)
        if wanted is None:
            return None
        for rider in self._riders:
            if try_normalize_phone(rider.phone) == wanted:
                return rider
        return None

    async def find_by_name(self, name: str) -> Optional[Rider]:
        wanted = name.strip().lower()
        for rider in self._riders:
            if rider.name.strip().lower() == wanted:
                return rider
        return None


class InMemoryRequestDetails:
    def __init__(self, details: Iterable[RequestDetails] = ()):
        self._details: dict[str, RequestDetails] = {d.request_id: d for d in details}

    def add(self, details: RequestDetails) -> None:
        self._details[details.request_id] = details

    async def get(self, request_id: str) -> Optional[RequestDetails]:
        return self._details.get(request_id)


class InMemoryTrackingLog:
    def __init__(self):
        self.outbound: list[OutboundMessage] = []
        self.inbound: list[InboundResponse] = []
        self.delivery_statuses: list[dict] = []

    async def record_outbound(self, entry: OutboundMessage) -> None:
        self.outbound.append(entry)

    async def record_inbound(self, response: InboundResponse) -> None:
        self.inbound.append(response)

    async def record_delivery_status(
            self,
            external_id: str,
            status: str,
            error_code: Optional[str] = None,
            received_at: Optional[datetime] = None,
    ) -> None:
        self.delivery_statuses.append({
            "external_id": external_id,
            "status": status,
            "error_code": error_code,
            "received_at": received_at,
        })

    async def has_inbound(self, external_message_id: str) -> bool:
        return any(r.external_message_id == external_message_id for r in self.inbound)
