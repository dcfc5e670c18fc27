"""
Async engine, session factory and store-error translation.

Every store call is bounded: asyncpg gets a per-command timeout, SQLite a busy
timeout, and pool checkout waits at most DB_POOL_TIMEOUT seconds. Whatever
the driver raises when one of those expires (or the connection drops) is
turned into StoreUnavailable by `store_guard`, so callers see a single
retryable error kind.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import get_settings
from app.core.exceptions import StoreUnavailable
from app.core.logging import get_logger
from app.core.metrics import record_store_error

logger = get_logger(__name__)
settings = get_settings()


def build_engine(url: str):
    if url.startswith("sqlite"):
        return create_async_engine(
            url,
            echo=settings.DEBUG,
            connect_args={"timeout": settings.DB_STATEMENT_TIMEOUT},
        )
    return create_async_engine(
        url,
        echo=settings.DEBUG,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
        connect_args={"command_timeout": settings.DB_STATEMENT_TIMEOUT},
    )


engine = build_engine(settings.DATABASE_URL)
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def is_transient(error: BaseException) -> bool:
    if isinstance(error, (sa_exc.OperationalError, sa_exc.InterfaceError, sa_exc.TimeoutError)):
        return True
    if isinstance(error, sa_exc.DBAPIError) and error.connection_invalidated:
        return True
    return isinstance(error, TimeoutError)


@asynccontextmanager
async def store_guard(db: AsyncSession, operation: str):
    """Roll back and raise StoreUnavailable on timeouts and lost connections."""
    try:
        yield
    except Exception as e:
        if not is_transient(e):
            raise
        record_store_error(operation)
        logger.error("store_unavailable", operation=operation, error=str(e))
        try:
            await db.rollback()
        except Exception as rollback_error:
            logger.warning("store_rollback_failed", operation=operation, error=str(rollback_error))
        raise StoreUnavailable(operation) from e
