"""
AsyncEngine and session factory for the relational store.

NullPool because PgBouncer owns connection pooling; SA should not
maintain its own pool on top.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from services.townintel.config import settings


def create_engine(database_url: str | None = None) -> AsyncEngine:
    """Create an async engine over the asyncpg driver."""
    url = (database_url or settings.database_url).replace(
        "postgresql://", "postgresql+asyncpg://", 1
    )
    return create_async_engine(
        url,
        poolclass=NullPool,
        echo=settings.debug and settings.environment == "development",
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: NullPool returns the connection after commit,
    # so attribute access after commit must not lazy-load.
    return async_sessionmaker(engine, expire_on_commit=False)

