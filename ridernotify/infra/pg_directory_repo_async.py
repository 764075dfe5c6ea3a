# ridernotify/infra/pg_directory_repo_async.py
"""
Read-only PostgreSQL views of the rider directory and request details.

``riders.phone_normalized`` holds the canonical 10-digit form and is
maintained by the directory service; lookups normalize the inbound number
the same way before matching.
"""
from __future__ import annotations

from typing import Optional

from ridernotify.core.domain import RequestDetails, Rider
from ridernotify.core.phone import try_normalize_phone
from ridernotify.infra.db_async import db_conn, retry_on_transient_error
from ridernotify.infra.logging_config import get_logger, mask_phone

logger = get_logger(__name__)


class AsyncPostgresRiderDirectory:
    @retry_on_transient_error()
    async def find_by_phone(self, phone: str) -> Optional[Rider]:
        normalized = try_normalize_phone(phone)
        if normalized is None:
            logger.debug(f"find_by_phone: unparseable number {mask_phone(phone)}")
            return None

        async with db_conn() as conn:
            row = await conn.fetchrow(
                "SELECT name, phone, email FROM riders WHERE phone_normalized = $1 ORDER BY name LIMIT 1",
                normalized
            )
        return Rider(name=row['name'], phone=row['phone'], email=row['email']) if row else None

    @retry_on_transient_error()
    async def find_by_name(self, name: str) -> Optional[Rider]:
        async with db_conn() as conn:
            row = await conn.fetchrow(
                "SELECT name, phone, email FROM riders WHERE lower(name) = lower($1)",
                name.strip()
            )
        return Rider(name=row['name'], phone=row['phone'], email=row['email']) if row else None


class AsyncPostgresRequestDetails:
    @retry_on_transient_error()
    async def get(self, request_id: str) -> Optional[RequestDetails]:
        async with db_conn() as conn:
            row = await conn.fetchrow(
                """
                SELECT request_id, notes, courtesy, special_requirements, requester_name, request_type
                FROM requests WHERE request_id = $1
                """,
                request_id
            )
        if not row:
            return None
        return RequestDetails(
            request_id=row['request_id'],
            notes=row['notes'],
            courtesy=bool(row['courtesy']),
            special_requirements=row['special_requirements'],
            requester_name=row['requester_name'],
            request_type=row['request_type'],
        )
