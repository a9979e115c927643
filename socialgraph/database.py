"""
Async SQLAlchemy engine + session factory for the relational store.

The store is MySQL wire-compatible, so we use the aiomysql driver.
The engine is created once at startup and reused across all requests.

Every request runs inside exactly one session transaction (see session_scope):
ledger operations that touch several rows (group + creator membership,
membership transition + member_count) either commit together or not at all.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Sequence

from sqlalchemy import Table
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from socialgraph.config import settings

logger = logging.getLogger(__name__)

engine = create_async_engine(
    settings.db_url,
    pool_pre_ping=True,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    echo=False,
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def init_db(
    tables: Optional[Sequence[Table]] = None,
    bind: Optional[AsyncEngine] = None,
) -> None:
    """Create the given tables (all when omitted) if they don't exist."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(
            lambda sync_conn: Base.metadata.create_all(sync_conn, tables=tables)
        )
    logger.info("Database tables initialised")


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker = AsyncSessionLocal,
) -> AsyncIterator[AsyncSession]:
    """One unit of work: commit on success, roll back on any exception."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db():
    """FastAPI dependency that yields an async DB session."""
    async with session_scope() as session:
        yield session
