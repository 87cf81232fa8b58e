"""Database wiring for the compliance learning service.

Provides:
- Base             — declarative base for all ORM models
- TimestampMixin   — id (UUID), created_at, updated_at
- TenantMixin      — tenant_id for tenant-scoped tables
- init_database / close_database — engine lifecycle, called from the app lifespan
- get_db_session   — FastAPI dependency yielding a request-scoped session
- session_scope    — async context manager for background jobs
- BaseRepository   — common base holding the session
"""

import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Generic, TypeVar

from sqlalchemy import DateTime
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    AsyncSessionTransaction,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from aumos_compliance_learning.observability import get_logger

logger = get_logger(__name__)


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Declarative base for all compliance learning models."""


class TimestampMixin:
    """Primary key and audit timestamps shared by every table."""

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class TenantMixin:
    """Tenant ownership column for tenant-scoped tables."""

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        index=True,
    )


# ---------------------------------------------------------------------------
# Engine / session lifecycle
# ---------------------------------------------------------------------------

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_database(
    database_url: str,
    pool_size: int = 10,
    max_overflow: int = 5,
    echo: bool = False,
) -> async_sessionmaker[AsyncSession]:
    """Create the async engine and session factory.

    Args:
        database_url: SQLAlchemy async database URL.
        pool_size: Connection pool size.
        max_overflow: Connections allowed above pool_size.
        echo: Echo SQL to the log.

    Returns:
        The configured session factory.
    """
    global _engine, _session_factory
    _engine = create_async_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        echo=echo,
        pool_pre_ping=True,
    )
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    logger.info("Database engine initialized", pool_size=pool_size)
    return _session_factory


async def close_database() -> None:
    """Dispose of the engine, closing pooled connections."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None
    _session_factory = None


def _require_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _session_factory


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session that commits on success and rolls back on error.

    Used by the background scheduler, which runs outside a request.

    Yields:
        An AsyncSession.
    """
    factory = _require_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a request-scoped transactional session.

    Yields:
        An AsyncSession committed when the request handler returns.
    """
    async with session_scope() as session:
        yield session


# ---------------------------------------------------------------------------
# Repository base
# ---------------------------------------------------------------------------

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """Common base for SQLAlchemy repositories.

    Args:
        session: The async session used for all queries.
        model: The ORM model class managed by the repository.
    """

    def __init__(self, session: AsyncSession, model: type[ModelT]) -> None:
        self._session = session
        self._model = model

    async def _save(self, instance: ModelT) -> ModelT:
        """Add, flush and refresh an instance.

        Args:
            instance: New or modified ORM instance.

        Returns:
            The refreshed instance.
        """
        self._session.add(instance)
        await self._session.flush()
        await self._session.refresh(instance)
        return instance

    def savepoint(self) -> AsyncSessionTransaction:
        """Open a SAVEPOINT so one batch item can fail without losing the rest."""
        return self._session.begin_nested()
