"""
Haven - Database Connection
===========================

Async engine and session factory. Every crisis write goes through a
session from AsyncSessionLocal; the pipeline opens one per couple.
"""

from collections.abc import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from haven.core.config import settings


class Base(DeclarativeBase):
    """Declarative base for crisis and upstream tables."""
    pass


# ==========================================================================
# Engine Setup
# ==========================================================================

def configure_sqlite_engine(engine: AsyncEngine) -> AsyncEngine:
    """
    Let SQLAlchemy own transaction boundaries on SQLite.

    The sqlite3 driver issues BEGIN lazily and only before DML, which breaks
    SAVEPOINT handling. We switch the driver to autocommit and emit BEGIN
    ourselves when SQLAlchemy starts a transaction.

    BEGIN IMMEDIATE takes the write lock up front, so overlapping pipelines
    queue on the busy timeout instead of failing a read-to-write upgrade
    with "database is locked".
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def create_engine() -> AsyncEngine:
    """Engine for DATABASE_URL; pooled on PostgreSQL, transaction-patched on SQLite."""
    if settings.is_sqlite:
        return configure_sqlite_engine(
            create_async_engine(
                str(settings.DATABASE_URL),
                echo=settings.DATABASE_ECHO,
                connect_args={"check_same_thread": False},
            )
        )
    else:
        return create_async_engine(
            str(settings.DATABASE_URL),
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            echo=settings.DATABASE_ECHO,
            pool_pre_ping=True,  # Verify connections before use
        )


engine = create_engine()


# ==========================================================================
# Session Factory
# ==========================================================================

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


# ==========================================================================
# Session Dependencies
# ==========================================================================

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session, committed when the endpoint returns."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """
    Dependency that provides the session factory itself.

    Used by endpoints that run the crisis pipeline, which opens and commits
    its own sessions.
    """
    return AsyncSessionLocal


# ==========================================================================
# Lifecycle
# ==========================================================================

async def init_db() -> None:
    """Create any missing tables. Migrations own the schema in production."""
    async with engine.begin() as conn:
        from haven.core import models  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose the engine on shutdown."""
    await engine.dispose()
