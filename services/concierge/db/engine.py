"""
AsyncEngine factory.

NullPool because PgBouncer owns connection pooling. SA should not maintain its
own pool on top.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from services.concierge.config import settings


def create_engine(database_url: str | None = None) -> AsyncEngine:
    url = (database_url or settings.database_url).replace(
        "postgresql://", "postgresql+asyncpg://", 1
    )
    return create_async_engine(
        url,
        poolclass=NullPool,
        echo=settings.debug and settings.environment == "development",
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """expire_on_commit=False: NullPool returns the connection after commit."""
    return async_sessionmaker(engine, expire_on_commit=False)
