"""Database session management."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tunevault.config import Settings

logger = logging.getLogger(__name__)


class Database:
    """Database connection and session manager."""

    def __init__(self, settings: Settings) -> None:
        """Initialize database with settings."""
        self.settings = settings
        url = settings.database.url

        engine_kwargs: dict[str, Any] = {
            "echo": settings.database.echo,
            "pool_pre_ping": settings.database.pool_pre_ping,
        }

        # Hey future me - the bounded pool (default 16) only exists for server databases.
        # aiosqlite picks its own pool class, passing pool_size there raises TypeError.
        if "sqlite" in url:
            engine_kwargs["connect_args"] = {
                "check_same_thread": False,
                "timeout": 30,  # Wait up to 30s for lock
            }
        else:
            engine_kwargs.update(
                {
                    "pool_size": settings.database.pool_size,
                    "max_overflow": settings.database.max_overflow,
                    "pool_timeout": settings.database.pool_timeout,
                    "pool_recycle": settings.database.pool_recycle,
                }
            )

        self._engine = create_async_engine(url, **engine_kwargs)

        if "sqlite" in url:
            self._configure_sqlite_connections()

        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    def _configure_sqlite_connections(self) -> None:
        """Enable foreign keys and explicit transactions for SQLite.

        SQLite has foreign keys disabled by default; the association tables rely on
        them for cascade deletes and referential integrity. Transactions are begun explicitly
        so that savepoints (session.begin_nested) nest inside them.
        """

        @event.listens_for(self._engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_conn: Any, _connection_record: Any) -> None:
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
            # The driver's own lazy BEGIN doesn't know about SAVEPOINT, so releasing the
            # first savepoint would commit everything. We emit BEGIN ourselves instead.
            dbapi_conn.isolation_level = None
            logger.debug("Enabled foreign keys for SQLite connection")

        @event.listens_for(self._engine.sync_engine, "begin")
        def begin_sqlite_transaction(conn: Any) -> None:
            conn.exec_driver_sql("BEGIN")

    # Listen up, session_scope() IS the transaction boundary of a sync: everything done with
    # the yielded session commits together on clean exit, or rolls back together when anything
    # raises. Local sync uses ONE scope for all local sources, remote sync one scope per source.
    @asynccontextmanager
    async def session_scope(self) -> AsyncGenerator[AsyncSession, None]:
        """Provide a transactional scope for database operations."""
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except BaseException:
                # Rollback on anything (including task cancellation), then re-raise.
                await session.rollback()
                raise

    async def close(self) -> None:
        """Close database connection."""
        await self._engine.dispose()

    async def create_tables(self) -> None:
        """Create all tables (for testing and first start without alembic)."""
        from tunevault.infrastructure.persistence.models import Base

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_tables(self) -> None:
        """Drop all tables (for testing only)."""
        from tunevault.infrastructure.persistence.models import Base

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
