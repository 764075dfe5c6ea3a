# ridernotify/infra/pg_assignment_repo_async.py
"""
Async PostgreSQL assignment store (asyncpg).

Rows are validated into the domain model through a pydantic schema at the
repository boundary, so a malformed row fails loudly here instead of deep
inside message composition.  Writes touch exactly one column per call.
"""
from __future__ import annotations

from datetime import date, datetime, time
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from ridernotify.core.domain import Assignment, AssignmentStatus, WRITABLE_FIELDS
from ridernotify.infra.db_async import db_conn, retry_on_transient_error
from ridernotify.infra.logging_config import get_logger

logger = get_logger(__name__)

_COLUMNS = (
    "id, request_id, rider_name, event_date, start_time, end_time, start_location, "
    "end_location, status, notified_at, sms_sent_at, email_sent_at, notes"
)
_ORDER = "ORDER BY event_date NULLS LAST, id"


class AssignmentRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

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

    def to_domain(self) -> Assignment:
        return Assignment(**self.model_dump())


def row_to_assignment(row) -> Assignment:
    return AssignmentRow.model_validate(dict(row)).to_domain()


class AsyncPostgresAssignmentStore:
    """AssignmentStore over the ``assignments`` table."""

    @retry_on_transient_error()
    async def get(self, assignment_id: str) -> Optional[Assignment]:
        async with db_conn() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM assignments WHERE id = $1",
                assignment_id
            )
        return row_to_assignment(row) if row else None

    @retry_on_transient_error()
    async def list(self) -> list[Assignment]:
        async with db_conn() as conn:
            rows = await conn.fetch(f"SELECT {_COLUMNS} FROM assignments {_ORDER}")
        return [row_to_assignment(r) for r in rows]

    @retry_on_transient_error()
    async def list_for_request(self, request_id: str) -> list[Assignment]:
        async with db_conn() as conn:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM assignments WHERE request_id = $1 {_ORDER}",
                request_id
            )
        return [row_to_assignment(r) for r in rows]

    @retry_on_transient_error()
    async def list_for_rider(self, rider_name: str) -> list[Assignment]:
        async with db_conn() as conn:
            rows = await conn.fetch(
                f"SELECT {_COLUMNS} FROM assignments WHERE lower(rider_name) = lower($1) {_ORDER}",
                rider_name.strip()
            )
        return [row_to_assignment(r) for r in rows]

    @retry_on_transient_error()
    async def set_field(self, assignment_id: str, field: str, value: Any) -> bool:
        # Column names cannot be bound parameters; the whitelist keeps this safe
        if field not in WRITABLE_FIELDS:
            raise ValueError(f"Field not writable: {field}")
        if isinstance(value, AssignmentStatus):
            value = value.value

        async with db_conn() as conn:
            result = await conn.execute(
                f"UPDATE assignments SET {field} = $2, updated_at = now() WHERE id = $1",
                assignment_id, value
            )

        # asyncpg returns "UPDATE N"
        updated = bool(result) and int(result.split()[-1]) > 0
        if not updated:
            logger.warning(f"set_field({field}) matched no assignment: {assignment_id}")
        return updated
