"""
Database Session Management.

The hub talks to a primary (writes: webhook intake, reconciliation,
provisioning) and optionally a replica (dashboards, orphan listings). Both
are created lazily so importing the app never opens a connection.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config import settings
from app.observability.tracing import instrument_sqlalchemy


class _LazyDatabase:
    """One engine plus its session factory, built on first use."""

    def __init__(self, url_setting: str) -> None:
        self.url_setting = url_setting
        self.engine: AsyncEngine | None = None
        self.sessionmaker: async_sessionmaker[AsyncSession] | None = None

    def get_engine(self) -> AsyncEngine:
        if self.engine is None:
            self.engine = create_async_engine(
                getattr(settings, self.url_setting),
                pool_size=settings.database_pool_size,
                max_overflow=settings.database_max_overflow,
                pool_timeout=settings.database_pool_timeout,
                pool_recycle=settings.database_pool_recycle,
                pool_pre_ping=True,
                echo=settings.log_level == "DEBUG",
            )
            instrument_sqlalchemy(self.engine)
        return self.engine

    def get_sessionmaker(self) -> async_sessionmaker[AsyncSession]:
        # Reconciliation reads ids after commit, so objects must stay loaded
        if self.sessionmaker is None:
            self.sessionmaker = async_sessionmaker(
                self.get_engine(), class_=AsyncSession, expire_on_commit=False
            )
        return self.sessionmaker

    async def dispose(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
        self.engine = None
        self.sessionmaker = None


_primary = _LazyDatabase("database_url")
_replica = _LazyDatabase("read_database_url")


def get_write_engine() -> AsyncEngine:
    return _primary.get_engine()


def get_read_engine() -> AsyncEngine:
    """Replica engine; falls back to the primary URL when no replica is set."""
    return _replica.get_engine()


async def get_write_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding a primary session.

    Callers commit explicitly; the session is closed whatever happens.
    """
    async with _primary.get_sessionmaker()() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_read_db() -> AsyncGenerator[AsyncSession, None]:
    async with _replica.get_sessionmaker()() as session:
        try:
            yield session
        finally:
            await session.close()


async def close_engines() -> None:
    """Dispose both pools on shutdown."""
    await _primary.dispose()
    await _replica.dispose()
