# ridernotify/infra/migrate.py
"""
Standalone migration runner.

Run migrations separately from application startup:
    python -m ridernotify.infra.migrate

The service validates the schema version at startup but never migrates.
"""
import asyncio
import sys

from ridernotify.config import get_settings
from ridernotify.infra.db_async import close_pool, init_pool
from ridernotify.infra.logging_config import get_logger, setup_logging
from ridernotify.infra.migrations_async import apply_migrations

logger = get_logger(__name__)


async def main() -> int:
    settings = get_settings()
    setup_logging(level=settings.log_level, use_json=settings.is_production)

    logger.info("=" * 60)
    logger.info("Database Migration Runner")
    logger.info(f"Environment: {settings.app_env}")
    logger.info("=" * 60)

    if not settings.database_url:
        logger.critical("DATABASE_URL is not set")
        return 1

    try:
        await init_pool(settings.database_url, min_size=1, max_size=2)
        result = await apply_migrations()
    except Exception as exc:
        logger.critical(f"MIGRATION FAILED: {exc}", exc_info=True)
        return 1
    finally:
        await close_pool()

    if result['applied']:
        for migration in result['applied']:
            logger.info(f"  ✓ {migration}")
    else:
        logger.info("No new migrations to apply")

    return 0 if result['ok'] else 1


def run() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
