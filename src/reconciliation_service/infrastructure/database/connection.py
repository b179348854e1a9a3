"""Database connection management."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import AsyncAdaptedQueuePool

from reconciliation_service.config import Settings, get_settings
from reconciliation_service.exceptions import PersistenceError


def get_async_engine(settings: Settings | None = None):
    """Create async database engine with connection pooling."""
    settings = settings or get_settings()
    return create_async_engine(
        settings.database_url,
        echo=settings.debug,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=True,
        pool_recycle=settings.db_pool_recycle,
    )


def get_async_session_factory(settings: Settings | None = None) -> async_sessionmaker[AsyncSession]:
    """Create async session factory."""
    engine = get_async_engine(settings)
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


# Process-wide session factory, created lazily by entrypoints only
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the process session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = get_async_session_factory()
    return _session_factory


async def dispose_engine() -> None:
    """Dispose the process engine (worker/script shutdown)."""
    global _session_factory
    if _session_factory is not None:
        await _session_factory.kw["bind"].dispose()
        _session_factory = None


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session as async context manager."""
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for FastAPI to get database session."""
    async with get_db_session() as session:
        yield session


@asynccontextmanager
async def transaction(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """Run a unit of work atomically.

    Opens a transaction, or a SAVEPOINT when one is already open, so a nested
    failure only undoes the innermost unit. Database errors surface as
    :class:`PersistenceError`; any other exception propagates unchanged after
    the rollback.
    """
    if session.in_transaction():
        ctx = session.begin_nested()
    else:
        ctx = session.begin()
    try:
        async with ctx:
            yield session
    except SQLAlchemyError as e:
        raise PersistenceError(str(e)) from e
