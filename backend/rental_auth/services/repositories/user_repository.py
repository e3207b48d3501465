"""User data access layer."""

import logging
from datetime import datetime

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rental_auth.models import OneTimeCode, User, UserRole, UserToken

from .exceptions import DuplicateError, NotFoundError

logger = logging.getLogger(__name__)


class UserRepository:
    """Centralized user data access.

    Naming conventions:
    - find_* : Query that may return None
    - get_* : Query that raises exception if missing
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def find_by_id(self, user_id: str) -> User | None:
        """Find user by primary key."""
        result = await self._db.execute(
            select(User).where(User.id == user_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_id(self, user_id: str) -> User:
        """Get user by primary key, raising NotFoundError if missing."""
        user = await self.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return user

    async def find_by_email(self, email: str) -> User | None:
        """Find user by email (case-insensitive)."""
        result = await self._db.execute(
            select(User)
            .where(func.lower(User.email) == email.strip().lower())
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create(self, user: User) -> User:
        """Persist a new user, raising DuplicateError if the email is taken."""
        if await self.find_by_email(user.email) is not None:
            raise DuplicateError("User", "email", user.email)
        self._db.add(user)
        await self._db.flush()
        return user

    async def add_role(self, user_id: str, role: str) -> None:
        """Grant a role; granting an existing role is a no-op."""
        existing = await self._db.get(UserRole, (user_id, role))
        if existing is None:
            self._db.add(UserRole(user_id=user_id, role=role))
            await self._db.flush()

    async def get_roles(self, user_id: str) -> list[str]:
        """Role names granted to a user, sorted."""
        result = await self._db.execute(
            select(UserRole.role).where(UserRole.user_id == user_id).order_by(UserRole.role)
        )
        return list(result.scalars().all())

    async def find_unverified_ids_created_before(self, cutoff: datetime, limit: int) -> list[str]:
        """IDs of unverified accounts older than ``cutoff``, oldest first."""
        result = await self._db.execute(
            select(User.id)
            .where(User.email_verified.is_(False), User.created_at < cutoff)
            .order_by(User.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def delete_with_dependents(self, user_ids: list[str]) -> int:
        """Delete users together with their codes, tokens and roles."""
        if not user_ids:
            return 0
        for model in (OneTimeCode, UserToken, UserRole):
            await self._db.execute(
                delete(model)
                .where(model.user_id.in_(user_ids))
                .execution_options(synchronize_session=False)
            )
        result = await self._db.execute(
            delete(User)
            .where(User.id.in_(user_ids))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
