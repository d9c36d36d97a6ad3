import asyncio
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker, AsyncEngine
from sqlalchemy.orm import declarative_base
from sqlalchemy import text

from sched_core.core.config import settings
from sched_core.core.setup_logger import db_logger
from sched_core.core.logger import info, warning


def build_engine(url: str = None, **kwargs) -> AsyncEngine:
    url = url or settings.async_database_url
    options = {"pool_pre_ping": True, "echo": settings.DEBUG}
    if not url.startswith("sqlite"):
        options.update(pool_size=settings.DB_POOL_SIZE, max_overflow=settings.DB_MAX_OVERFLOW)
    options.update(kwargs)
    return create_async_engine(url, **options)


async def connect_with_retry(retries=5, delay=3):
    """Create async engine with retry logic."""
    for attempt in range(retries):
        try:
            engine = build_engine()
            # Test the connection
            async with engine.begin() as connection:
                await connection.execute(text("SELECT 1"))
            return engine
        except Exception as e:
            if attempt == retries - 1:
                raise
            warning(db_logger, f"Database connection attempt {attempt + 1} failed, retrying in {delay} seconds...", context={
                "error": str(e),
            })
            await asyncio.sleep(delay)


# Create async engine and session factory
engine = None
SessionLocal = None
Base = declarative_base()


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind=bind,
        class_=AsyncSession,
        expire_on_commit=False
    )


async def init_database():
    """Initialize database connection."""
    global engine, SessionLocal

    if engine is None:
        engine = await connect_with_retry()
        SessionLocal = make_session_factory(engine)
        info(db_logger, "Async database connection initialized")


async def close_database():
    """Close database connections."""
    global engine, SessionLocal
    if engine:
        await engine.dispose()
        engine = None
        SessionLocal = None
        info(db_logger, "Database connections closed")


async def get_session_factory() -> async_sessionmaker:
    if SessionLocal is None:
        await init_database()
    return SessionLocal


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for async database sessions."""
    factory = await get_session_factory()

    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
