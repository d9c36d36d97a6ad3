"""
Simple script to create database tables.
Run this once to set up the database schema:

    python -m sched_core.db.create_tables
"""
import asyncio

from sched_core.core.setup_logger import db_logger
from sched_core.core.logger import warning
from sched_core.db.database import build_engine, Base
import sched_core.models  # noqa: F401  registers every table on Base.metadata


async def create_tables(engine=None):
    """Create all database tables."""
    owns_engine = engine is None
    engine = engine or build_engine(echo=True)

    warning(db_logger, "Creating database tables...")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    warning(db_logger, "Database tables created successfully!", context={
        "tables": sorted(Base.metadata.tables.keys()),
    })

    if owns_engine:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(create_tables())
