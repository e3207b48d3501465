"""Database configuration, session management and transaction scopes."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from rental_auth.config import settings


# Base class for ORM models
class Base(DeclarativeBase):
    """Base class for all SQLAlchemy ORM models."""

    pass


def build_engine(database_url: str | None = None, **kwargs) -> AsyncEngine:
    """Create an async engine with the production pool settings."""
    url = database_url or settings.database_url
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.database_echo, **kwargs)
    return create_async_engine(
        url,
        pool_pre_ping=True,  # Enable connection health checks
        pool_size=10,  # Number of connections to maintain
        max_overflow=20,  # Maximum number of connections beyond pool_size
        pool_recycle=3600,  # Recycle connections after 1 hour
        echo=settings.database_echo,
        isolation_level="READ COMMITTED",
        **kwargs,
    )


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to the given engine."""
    return async_sessionmaker(
        bind=bind,
        autoflush=False,
        expire_on_commit=False,  # Prevent lazy loading errors after commit
    )


engine = build_engine()
SessionLocal = build_session_factory(engine)


# Dependency for FastAPI routes
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Database session dependency for FastAPI routes.

    Yields:
        AsyncSession: SQLAlchemy database session
    """
    async with SessionLocal() as db:
        yield db


class TransactionScope:
    """Handle for a unit of work; rolled back on exit unless committed."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self.completed = False

    async def commit(self) -> None:
        await self._session.commit()
        self.completed = True

    async def rollback(self) -> None:
        await self._session.rollback()
        self.completed = True


class UnitOfWork:
    """Opens transaction scopes over a single session."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[TransactionScope, None]:
        """Yield a scope that rolls back on exit unless ``commit()`` was called."""
        scope = TransactionScope(self.session)
        try:
            yield scope
        finally:
            if not scope.completed:
                await self.session.rollback()
