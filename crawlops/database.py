from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from crawlops.config import settings


class Base(DeclarativeBase):
    pass


def create_engine(url: str | None = None, **kwargs) -> AsyncEngine:
    """Create the shared, bounded connection pool.

    SQLite URLs (used in tests) do not accept pool sizing arguments.
    """
    url = url or settings.database_url
    if not url.startswith("sqlite"):
        kwargs.setdefault("pool_size", settings.database_pool_size)
        kwargs.setdefault("max_overflow", settings.database_max_overflow)
        kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
