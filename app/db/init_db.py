"""
Create the documents table if it does not exist.

Usage: python -m app.db.init_db
"""

import asyncio
import logging

from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncEngine

# Register models on Base.metadata
from app.core.models import Document  # noqa: F401
from app.core.logging import configure_logging
from app.db.session import Base, engine

logger = logging.getLogger(__name__)


async def ensure_tables(db_engine: AsyncEngine) -> list:
    """Create missing tables. Returns the names of tables that were created."""
    async with db_engine.begin() as conn:
        existing = await conn.run_sync(lambda sync_conn: set(inspect(sync_conn).get_table_names()))
        missing = [t.name for t in Base.metadata.sorted_tables if t.name not in existing]
        await conn.run_sync(Base.metadata.create_all)
    return missing


async def main() -> None:
    configure_logging()
    missing = await ensure_tables(engine)
    if missing:
        logger.info("Created missing tables: %s", ", ".join(missing))
    else:
        logger.info("All required tables already exist in the database.")
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
