"""
Database infrastructure.

This module provides the declarative base for all models and the
``Database`` handle that owns the async SQLAlchemy engine and session
factory. The handle is opened and synchronized during startup and closed
exactly once during shutdown; every other component (session middleware,
webhook persistence) only borrows its session factory.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from sqlalchemy import DateTime, event, text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.pool import Pool

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """
    Base class for all database models.

    Provides common columns that all models inherit:
    - id: Integer primary key with automatic indexing
    - created_at: Timezone-aware timestamp of record creation (UTC)
    - updated_at: Timezone-aware timestamp of last update (UTC)
    """

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


@event.listens_for(Pool, "connect")
def receive_connect(dbapi_conn: Any, connection_record: Any) -> None:
    """Log when a new connection is established to the database."""
    logger.debug("Database connection established")


class Database:
    """
    Owner of the async engine and session factory.

    Example:
        >>> db = Database("sqlite+aiosqlite:///database/data.sqlite")
        >>> await db.open()
        >>> await db.sync()
        >>> async with db.session_factory() as session:
        ...     ...
        >>> await db.close()
    """

    def __init__(self, url: str, *, echo: bool = False) -> None:
        self._url = url
        self._echo = echo
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def url(self) -> str:
        return self._url

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("database not opened")
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise RuntimeError("database not opened")
        return self._session_factory

    def _safe_url(self) -> str:
        """Database URL without credentials, for logging."""
        return make_url(self._url).render_as_string(hide_password=True)

    def _ensure_sqlite_directory(self) -> None:
        url = make_url(self._url)
        if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    async def open(self) -> None:
        """
        Create the engine and verify the database is reachable.

        Raises:
            Exception: If the database cannot be reached
        """
        self._ensure_sqlite_directory()
        engine = create_async_engine(self._url, echo=self._echo, future=True)
        try:
            async with engine.begin() as conn:
                result = await conn.execute(text("SELECT 1"))
                assert result.scalar() == 1
        except Exception as e:
            logger.error(
                "Failed to connect to database",
                extra={"error": str(e), "database_url": self._safe_url()},
                exc_info=True,
            )
            await engine.dispose()
            raise

        self._engine = engine
        self._session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info(
            "Database connection established successfully",
            extra={"database_url": self._safe_url()},
        )

    async def sync(self) -> None:
        """Create any missing tables for the registered models."""
        # Registers every model on Base.metadata
        import streamhooks.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(
            "Database schema synchronized",
            extra={"tables": sorted(Base.metadata.tables)},
        )

    async def close(self) -> None:
        """Dispose of the connection pool."""
        if self._engine is None:
            return
        engine = self._engine
        self._engine = None
        self._session_factory = None
        await engine.dispose()
        logger.info("Database connections closed and pool disposed")

    async def health(self) -> dict[str, Any]:
        """
        Check database health status.

        Returns:
            dict: Health status with 'status' and optional 'error' keys
        """
        try:
            async with self.engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
            return {"status": "healthy", "database": "connected"}
        except Exception as e:
            logger.error("Database health check failed", extra={"error": str(e)}, exc_info=True)
            return {"status": "unhealthy", "database": "disconnected", "error": str(e)}
