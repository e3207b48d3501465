"""Database initialization script."""

import asyncio

from sqlalchemy.ext.asyncio import AsyncEngine

from rental_auth.database import Base, engine
from rental_auth.models import OneTimeCode, User, UserRole, UserToken  # noqa: F401


async def create_tables(bind: AsyncEngine | None = None) -> None:
    """Create all database tables."""
    print("Creating database tables...")
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("Tables created successfully!")


if __name__ == "__main__":
    asyncio.run(create_tables())
