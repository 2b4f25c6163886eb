"""Process-level lifecycle for the merge engine.

Hosts (a web app, a worker, a script) call ``startup()`` once, open sessions
with ``db.database.get_session()``, and call ``shutdown()`` on exit. The
``merge_engine()`` context manager does both:

    async with merge_engine():
        async with get_session() as session:
            clusters = await get_entity_merge_service(session).detect_duplicates(3)
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import text

import db.database as database
from config import Settings, get_settings
from utils.logging import configure_logging, get_logger

APP_NAME = "CaseGraph merge engine"

logger = get_logger(__name__)


async def check_database_connection() -> bool:
    """Verify the database connection is healthy."""
    if database.engine is None:
        return False
    try:
        async with database.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


async def startup(settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    configure_logging(level=settings.log_level, json_format=settings.log_json)
    logger.info(f"Starting {APP_NAME}", extra={"settings": repr(settings)})

    try:
        await database.init_database(settings.database_url)
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        await database.close_database()
        raise


async def shutdown() -> None:
    await database.close_database()
    logger.info(f"{APP_NAME} stopped")


@asynccontextmanager
async def merge_engine(settings: Optional[Settings] = None) -> AsyncIterator[None]:
    await startup(settings)
    try:
        yield
    finally:
        await shutdown()
