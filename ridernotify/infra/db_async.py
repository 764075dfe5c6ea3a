# ridernotify/infra/db_async.py
"""
Async database access using asyncpg.

One process-wide pool, opened in the app lifespan (or by the migration
runner) and closed on shutdown.  Repositories borrow connections through
``db_conn()`` and wrap their queries in ``retry_on_transient_error``.
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from functools import wraps
from typing import AsyncIterator, Callable

import asyncpg

from ridernotify.infra.logging_config import get_logger
from ridernotify.infra.metrics import NotifyMetrics

logger = get_logger(__name__)

# Global connection pool
_pool: asyncpg.Pool | None = None


async def init_pool(dsn: str, min_size: int = 2, max_size: int = 10) -> None:
    """Initialize connection pool on startup"""
    global _pool

    if _pool is not None:
        return

    logger.info("Initializing asyncpg connection pool")

    _pool = await asyncpg.create_pool(
        dsn=dsn,
        min_size=min_size,
        max_size=max_size,
        command_timeout=60,
        server_settings={
            'application_name': 'ridernotify',
        }
    )

    logger.info(f"Connection pool created: min={min_size}, max={max_size}")


async def close_pool() -> None:
    """Close connection pool on shutdown"""
    global _pool

    if _pool is None:
        return

    logger.info("Closing connection pool")
    await _pool.close()
    _pool = None
    logger.info("Connection pool closed")


@asynccontextmanager
async def db_conn(autocommit: bool = True) -> AsyncIterator[asyncpg.Connection]:
    """
    Get database connection from pool.

    Usage:
        async with db_conn() as conn:
            row = await conn.fetchrow("SELECT * FROM assignments WHERE id = $1", assignment_id)

    Args:
        autocommit: If True (default), each statement commits on its own.
                    If False, the block runs in one transaction.
    """
    if _pool is None:
        raise RuntimeError("Connection pool not initialized. Call init_pool() first.")

    async with _pool.acquire() as conn:
        if autocommit:
            yield conn
        else:
            async with conn.transaction():
                yield conn


def is_transient_error(exc: Exception) -> bool:
    """
    Check if database error is transient (should retry).

    Connection loss, too many connections and deadlocks are transient;
    constraint violations and bad SQL are not.
    """
    if isinstance(exc, (
            asyncpg.PostgresConnectionError,
            asyncpg.TooManyConnectionsError,
            asyncpg.DeadlockDetectedError,
            ConnectionError,
            asyncio.TimeoutError,
    )):
        return True
    if isinstance(exc, asyncpg.PostgresError):
        return False

    error_message = str(exc).lower()
    return any(p in error_message for p in ("connection reset", "server closed", "too many connections"))


def retry_on_transient_error(
        max_retries: int = 3,
        initial_delay: float = 0.1,
        backoff_factor: float = 2.0,
        max_delay: float = 5.0,
):
    """
    Decorator to retry an async repository method on transient database errors.

    Example:
        @retry_on_transient_error(max_retries=3)
        async def get(self, assignment_id: str):
            async with db_conn() as conn:
                return await conn.fetchrow(...)
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            delay = initial_delay

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except Exception as exc:
                    if not is_transient_error(exc) or attempt >= max_retries:
                        NotifyMetrics.database_error(func.__name__)
                        raise

                    logger.warning(
                        f"Transient error in {func.__name__} (attempt {attempt + 1}/{max_retries}): {exc}. "
                        f"Retrying in {delay:.2f}s..."
                    )
                    await asyncio.sleep(delay)
                    delay = min(delay * backoff_factor, max_delay)

        return wrapper
    return decorator
