"""Database session configuration"""

import os
import logging
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from dotenv import load_dotenv

load_dotenv(dotenv_path=".env")

logger = logging.getLogger(__name__)

# PostgreSQL connection string format:
# postgresql://postgres:[PASSWORD]@[HOST]:[PORT]/gamers_spot
DATABASE_URL = os.getenv("DATABASE_URL")

if not DATABASE_URL:
    raise ValueError("DATABASE_URL environment variable is not set")

# Convert to async URL format (postgresql+psycopg://...)
if DATABASE_URL.startswith("postgresql://"):
    ASYNC_DATABASE_URL = DATABASE_URL.replace("postgresql://", "postgresql+psycopg://", 1)
elif DATABASE_URL.startswith("postgres://"):
    # Heroku/Vercel style URLs
    ASYNC_DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql+psycopg://", 1)
elif DATABASE_URL.startswith("postgresql+psycopg://"):
    ASYNC_DATABASE_URL = DATABASE_URL
elif DATABASE_URL.startswith("sqlite+aiosqlite://"):
    # Local development and tests
    ASYNC_DATABASE_URL = DATABASE_URL
else:
    raise ValueError(f"Unsupported database URL format: {DATABASE_URL}")

IS_SQLITE = ASYNC_DATABASE_URL.startswith("sqlite")

# Connection pool configuration
POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))  # Default 5 connections
MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))  # Default 10 overflow
POOL_TIMEOUT = int(os.getenv("DB_POOL_TIMEOUT", "30"))  # Default 30 seconds
POOL_RECYCLE = int(os.getenv("DB_POOL_RECYCLE", "3600"))  # Default 1 hour

if IS_SQLITE:
    engine = create_async_engine(ASYNC_DATABASE_URL, echo=False)
else:
    engine = create_async_engine(
        ASYNC_DATABASE_URL,
        pool_pre_ping=True,  # Verify connections before using them
        pool_size=POOL_SIZE,
        max_overflow=MAX_OVERFLOW,
        pool_timeout=POOL_TIMEOUT,
        pool_recycle=POOL_RECYCLE,
        echo=False,  # Set to True to see SQL queries in logs
    )

# Create async session factory
SessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency function for FastAPI routes.

    Usage:
        @router.get("/example")
        async def example(db: AsyncSession = Depends(get_db)):
            ...
    """
    async with SessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


def get_pool_stats() -> dict:
    """
    Get current connection pool statistics.

    Returns:
        Dictionary with pool statistics:
        - size: Total pool size
        - checked_in: Connections currently checked in (available)
        - checked_out: Connections currently checked out (in use)
        - overflow: Overflow connections
        - max_overflow: Configured overflow ceiling
    """
    try:
        sync_pool = engine.sync_engine.pool

        def _call(name: str, default: int) -> int:
            func = getattr(sync_pool, name, None)
            value = func() if callable(func) else default
            return int(value) if value is not None else default

        return {
            "size": _call("size", POOL_SIZE),
            "checked_in": _call("checkedin", 0),
            "checked_out": _call("checkedout", 0),
            "overflow": max(0, _call("overflow", 0)),
            "max_overflow": int(getattr(sync_pool, "_max_overflow", MAX_OVERFLOW)),
        }
    except Exception as e:
        logger.warning(f"Error getting pool stats: {e}")
        return {
            "size": POOL_SIZE,
            "checked_in": 0,
            "checked_out": 0,
            "overflow": 0,
            "max_overflow": MAX_OVERFLOW,
        }


def log_pool_stats(context: str = ""):
    """
    Log current connection pool statistics.

    Args:
        context: Optional context string to include in log message
    """
    stats = get_pool_stats()
    in_use = stats["checked_out"]
    total_capacity = stats["size"] + stats["max_overflow"]
    utilization = (in_use / total_capacity * 100) if total_capacity > 0 else 0

    context_str = f" [{context}]" if context else ""
    logger.info(
        f"Connection pool stats{context_str}: "
        f"available={stats['checked_in']}, in_use={in_use}, overflow={stats['overflow']}, "
        f"utilization={utilization:.1f}%"
    )

    # Row locks on subscriptions hold a connection for the whole resolve
    if utilization > 80:
        logger.warning(
            f"Connection pool utilization is high ({utilization:.1f}%)! "
            f"Consider increasing pool size or investigating slow queries."
        )


# Note: For async engines, we listen to the sync_engine
from sqlalchemy import event  # noqa: E402


@event.listens_for(engine.sync_engine, "connect")
def on_connect(dbapi_conn, connection_record):
    """Log when a new connection is created"""
    logger.debug("New database connection created")


@event.listens_for(engine.sync_engine, "invalidate")
def on_invalidate(dbapi_conn, connection_record, exception):
    """Log when a connection is invalidated"""
    logger.warning(
        f"Database connection invalidated: {exception}",
        exc_info=exception
    )
