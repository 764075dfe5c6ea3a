# ridernotify/infra/pg_tracking_log_async.py
"""
Async PostgreSQL tracking log (asyncpg).

Append-only: rows are inserted, never updated or deleted by the service.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from ridernotify.core.domain import InboundResponse, OutboundMessage
from ridernotify.infra.db_async import db_conn, retry_on_transient_error
from ridernotify.infra.logging_config import get_logger

logger = get_logger(__name__)


class AsyncPostgresTrackingLog:
    @retry_on_transient_error()
    async def record_outbound(self, entry: OutboundMessage) -> None:
        async with db_conn() as conn:
            await conn.execute(
                """
                INSERT INTO tracking_log
                  (direction, channel, address, body, subject, external_id, assignment_id,
                   rider_name, result, attempts, error, created_at)
                VALUES ('outbound', $1, $2, $3, $4, $5, $6, $7, $8, $9, $10, COALESCE($11, now()))
                """,
                entry.channel.value, entry.recipient_address, entry.body, entry.subject,
                entry.external_id, entry.assignment_id, entry.rider_name, entry.result,
                entry.attempts, entry.error, entry.sent_at,
            )

    @retry_on_transient_error()
    async def record_inbound(self, response: InboundResponse) -> None:
        async with db_conn() as conn:
            result = await conn.execute(
                """
                INSERT INTO tracking_log
                  (direction, channel, address, body, external_id, assignment_id, rider_name,
                   intent, auto_reply_sent, error, created_at)
                VALUES ('inbound', 'SMS', $1, $2, $3, $4, $5, $6, $7, $8, $9)
                ON CONFLICT (external_id) WHERE direction = 'inbound' DO NOTHING
                """,
                response.from_address, response.body, response.external_message_id,
                response.assignment_affected, response.matched_rider_name,
                response.classified_intent.value, response.auto_reply_sent, response.error,
                response.received_at,
            )
        if result and result.endswith(" 0"):
            logger.info(f"Inbound {response.external_message_id} already logged")

    @retry_on_transient_error()
    async def record_delivery_status(
            self,
            external_id: str,
            status: str,
            error_code: Optional[str] = None,
            received_at: Optional[datetime] = None,
    ) -> None:
        async with db_conn() as conn:
            await conn.execute(
                """
                INSERT INTO tracking_log (direction, external_id, result, error, created_at)
                VALUES ('status', $1, $2, $3, COALESCE($4, now()))
                """,
                external_id, status, error_code, received_at,
            )

    @retry_on_transient_error()
    async def has_inbound(self, external_message_id: str) -> bool:
        async with db_conn() as conn:
            return bool(await conn.fetchval(
                "SELECT EXISTS (SELECT 1 FROM tracking_log WHERE direction = 'inbound' AND external_id = $1)",
                external_message_id
            ))
