"""Database Connection, Session and Transaction Management"""

import logging
import re
import ssl
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from typing import AsyncGenerator, AsyncIterator

from app.config import settings

logger = logging.getLogger(__name__)

database_url = settings.async_database_url

# asyncpg uses ssl=SSLContext or True, not sslmode; strip sslmode from URL (asyncpg#737, SQLAlchemy#6275)
connect_args = {}
if re.search(r"[?&]sslmode=(require|required|verify-full)", database_url, re.I):
    _ssl_ctx = ssl.create_default_context()
    _ssl_ctx.check_hostname = False
    _ssl_ctx.verify_mode = ssl.CERT_NONE
    connect_args["ssl"] = _ssl_ctx
    database_url = re.sub(r"[?&]sslmode=[^&]+", "", database_url, flags=re.I)
    database_url = re.sub(r"\?&", "?", database_url).rstrip("?")
if "?&" in database_url:
    database_url = database_url.replace("?&", "?")

# Create async engine with connection pooling (pool_pre_ping detects stale connections)
engine = create_async_engine(
    database_url,
    connect_args=connect_args,
    pool_pre_ping=True,
    pool_size=settings.DB_POOL_SIZE,
    max_overflow=settings.DB_MAX_OVERFLOW,
    pool_timeout=settings.DB_POOL_TIMEOUT,
    pool_recycle=settings.DB_POOL_RECYCLE,
    echo=settings.DEBUG,
    future=True,
)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

# Base class for declarative models
Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency function to get database session.

    Services commit their own unit of work; this commits anything left
    pending and rolls back when the request fails.

    Yields:
        AsyncSession: Database session
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def transaction(db: AsyncSession, auto_commit: bool = True) -> AsyncIterator[AsyncSession]:
    """
    Unit-of-work boundary used by every mutating service call.

    With auto_commit=True the block commits on success and rolls back on
    any exception. With auto_commit=False the caller owns the transaction:
    the block only flushes, and exceptions propagate untouched so the
    caller can roll back everything it did.

    Example:
        ```python
        async with transaction(db, auto_commit):
            student.class_id = target.id
        ```
    """
    try:
        yield db
        if auto_commit:
            await db.commit()
        else:
            await db.flush()
    except Exception as e:
        if auto_commit:
            await db.rollback()
            logger.error(
                "Transaction rolled back",
                extra={
                    "error": str(e),
                    "error_code": getattr(e, "code", type(e).__name__),
                    "details": getattr(e, "details", None),
                },
            )
        raise


async def init_db() -> None:
    """Initialize database tables (for development only)"""
    import app.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Close database connections"""
    await engine.dispose()
