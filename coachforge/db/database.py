"""Database connection and session management."""
import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from coachforge.config.settings import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def create_primary_engine() -> AsyncEngine:
    """Create the database engine used by requests and background jobs."""
    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        pool_size=20,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=300,
        pool_pre_ping=True,
    )


engine = create_primary_engine()

# Repositories open one session (and one transaction) per operation from this
# factory, so background jobs commit every chunk as soon as it is appended.
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


async def init_db():
    """Create tables owned by this service."""
    # Import models so their tables are registered on Base.metadata.
    import coachforge.models  # noqa: F401

    async with engine.begin() as conn:
        # Similarity search casts the stored float arrays to pgvector
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized")


async def close_engine():
    """Dispose the connection pool."""
    await engine.dispose()
