"""
Async engine and session factory for the platform database

PostgreSQL (asyncpg) in deployments, SQLite (aiosqlite) for local runs and tests.
"""

import logging
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool

from config.config import DATABASE_URL, ENVIRONMENT
from src.database.models import Base

logger = logging.getLogger(__name__)


_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def _pool_options() -> dict:
    """asyncpg pool settings; SQLite keeps SQLAlchemy's defaults"""
    if not DATABASE_URL.startswith("postgresql"):
        return {}

    production = ENVIRONMENT == "production"
    return {
        "poolclass": AsyncAdaptedQueuePool,
        "pool_size": 10 if production else 5,
        "max_overflow": 20 if production else 10,
        "pool_pre_ping": True,
        "pool_recycle": 3600,
        "connect_args": {
            # pgbouncer in transaction mode breaks prepared statements
            "statement_cache_size": 0,
            "server_settings": {"application_name": "ctg_api", "jit": "off"},
        },
    }


def get_engine() -> AsyncEngine:
    """Lazily build the process-wide engine"""
    global _engine

    if _engine is None:
        _engine = create_async_engine(DATABASE_URL, echo=False, **_pool_options())
        backend = DATABASE_URL.split(":", 1)[0]
        logger.info(f"Database engine ready ({backend}, environment={ENVIRONMENT})")

    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    global _session_maker

    if _session_maker is None:
        # Objects stay usable after commit; services return them to the serializers
        _session_maker = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    return _session_maker


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped session for route handlers

    Anything that escapes the handler rolls the session back before it
    reaches the exception handlers in api_server.
    """
    async with get_session_maker()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create missing tables (non-production startup)"""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info(f"Schema ensured: {len(Base.metadata.tables)} tables")


async def dispose_engine() -> None:
    global _engine, _session_maker

    if _engine is not None:
        await _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None
    _session_maker = None


async def ping(session: AsyncSession) -> bool:
    """True when the database answers a trivial query"""
    try:
        await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database ping failed: {e}")
        return False
    return True
