"""
LoveCakes Backend — Pre-Start Database Wait
=============================================

What:  Blocks until SQL Server accepts connections, then exits 0.
How:   Retries DatabasePool.ping() with tenacity at a fixed interval, up to
       DB_STARTUP_MAX_ATTEMPTS times. Exits non-zero when the database never
       comes up.
When:  Run by the container entrypoint before uvicorn:
           python -m app.backend_pre_start && lovecakes-api
"""

import asyncio
import logging
import sys

from tenacity import after_log, before_log, retry, stop_after_attempt, wait_fixed

from app.config import settings
from app.database import DatabasePool

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@retry(
    stop=stop_after_attempt(settings.db_startup_max_attempts),
    wait=wait_fixed(settings.db_startup_wait_seconds),
    before=before_log(logger, logging.INFO),
    after=after_log(logger, logging.WARNING),
    reraise=True,
)
async def init(pool: DatabasePool) -> None:
    try:
        await pool.ping()
    except Exception as e:
        logger.error("Database not ready: %s", e)
        raise


async def wait_for_database() -> None:
    pool = DatabasePool(settings.database_config())
    try:
        await init(pool)
    finally:
        await pool.dispose()


def main() -> int:
    logger.info("Initializing service")
    try:
        asyncio.run(wait_for_database())
    except Exception:
        logger.error("Database did not become available; giving up")
        return 1
    logger.info("Service finished initializing")
    return 0


if __name__ == "__main__":
    sys.exit(main())
