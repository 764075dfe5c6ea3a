# ridernotify/infra/schema_validator.py
"""
Startup schema checks.

The service does NOT run migrations itself.  At startup it verifies that
the latest applied migration matches the expected version and that the
columns the repositories read are all present, and refuses to start
otherwise.
"""
from __future__ import annotations

from ridernotify.infra.db_async import db_conn
from ridernotify.infra.logging_config import get_logger

logger = get_logger(__name__)

# Columns the repositories depend on, checked once at startup
REQUIRED_COLUMNS: dict[str, tuple[str, ...]] = {
    "assignments": (
        "id", "request_id", "rider_name", "event_date", "start_time", "end_time",
        "start_location", "end_location", "status", "notified_at", "sms_sent_at",
        "email_sent_at", "notes",
    ),
    "riders": ("name", "phone", "phone_normalized", "email"),
    "requests": (
        "request_id", "notes", "courtesy", "special_requirements",
        "requester_name", "request_type",
    ),
    "tracking_log": (
        "id", "direction", "channel", "address", "body", "external_id",
        "assignment_id", "rider_name", "result", "intent", "error", "created_at",
    ),
}


async def validate_schema_version(expected_version: str) -> dict:
    """
    Raises:
        RuntimeError: If schema is missing, outdated, or lacks a required column
    """
    async with db_conn() as conn:
        table_exists = await conn.fetchval(
            """
            SELECT EXISTS (
                SELECT FROM information_schema.tables
                WHERE table_schema = 'public'
                AND table_name = 'schema_migrations'
            )
            """
        )
        if not table_exists:
            error = (
                "Schema migrations table not found. "
                "Run migrations first: python -m ridernotify.infra.migrate"
            )
            logger.critical(error)
            raise RuntimeError(error)

        latest = await conn.fetchrow(
            "SELECT version, applied_at FROM schema_migrations ORDER BY version DESC LIMIT 1"
        )
        if not latest:
            error = "No migrations have been applied. Run: python -m ridernotify.infra.migrate"
            logger.critical(error)
            raise RuntimeError(error)

        current_version = latest['version']
        if current_version != expected_version:
            error = (
                f"Schema version mismatch! Expected: {expected_version}, Found: {current_version}. "
                f"Run migrations to update schema: python -m ridernotify.infra.migrate"
            )
            logger.critical(error)
            raise RuntimeError(error)

        rows = await conn.fetch(
            """
            SELECT table_name, column_name
            FROM information_schema.columns
            WHERE table_schema = 'public' AND table_name = ANY($1::text[])
            """,
            list(REQUIRED_COLUMNS),
        )

    present: dict[str, set[str]] = {}
    for row in rows:
        present.setdefault(row['table_name'], set()).add(row['column_name'])

    missing = [
        f"{table}.{column}"
        for table, columns in REQUIRED_COLUMNS.items()
        for column in columns
        if column not in present.get(table, set())
    ]
    if missing:
        error = f"Database schema is missing required columns: {', '.join(missing)}"
        logger.critical(error)
        raise RuntimeError(error)

    logger.info(f"Schema version validated: {current_version}")
    return {"ok": True, "current_version": current_version, "expected_version": expected_version}
