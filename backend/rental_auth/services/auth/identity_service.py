"""Identity provider: users, passwords, roles and security stamps."""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from rental_auth.models import User
from rental_auth.services.auth.auth_service import AuthService
from rental_auth.services.repositories import UserRepository

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 100


def validate_password(password: str) -> list[str]:
    """Return the password policy violations for ``password`` (empty when valid)."""
    errors = []
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if len(password) > MAX_PASSWORD_LENGTH:
        errors.append(f"Password must be at most {MAX_PASSWORD_LENGTH} characters")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one digit")
    return errors


@dataclass
class IdentityResult:
    succeeded: bool
    errors: list[str] = field(default_factory=list)
    user: User | None = None

    @classmethod
    def failed(cls, *errors: str) -> "IdentityResult":
        return cls(succeeded=False, errors=list(errors))


class IdentityService:
    """User store operations used by the auth flows."""

    def __init__(self, db: AsyncSession) -> None:
        self._users = UserRepository(db)

    async def find_by_email(self, email: str) -> User | None:
        return await self._users.find_by_email(email)

    async def find_by_id(self, user_id: str) -> User | None:
        return await self._users.find_by_id(user_id)

    async def get_by_id(self, user_id: str) -> User:
        return await self._users.get_by_id(user_id)

    async def create_user(
        self, email: str, password: str, first_name: str = "", last_name: str = ""
    ) -> IdentityResult:
        """Create an unverified user after checking the password policy."""
        errors = validate_password(password)
        if errors:
            return IdentityResult.failed(*errors)

        password_hash = await asyncio.to_thread(AuthService.hash_password, password)
        user = User(
            email=email.strip().lower(),
            first_name=first_name,
            last_name=last_name,
            password_hash=password_hash,
            email_verified=False,
        )
        await self._users.create(user)
        return IdentityResult(succeeded=True, user=user)

    async def check_password(self, user: User | None, password: str) -> bool:
        """Verify ``password``; always runs bcrypt, against a dummy hash if needed."""
        hashed = user.password_hash if user and user.password_hash else None
        verified = await asyncio.to_thread(
            AuthService.verify_password, password, hashed or AuthService.get_dummy_hash()
        )
        return verified and hashed is not None

    async def add_role(self, user: User, role: str) -> None:
        await self._users.add_role(user.id, role)

    async def get_roles(self, user: User) -> list[str]:
        return await self._users.get_roles(user.id)

    async def remove_password(self, user: User) -> IdentityResult:
        user.password_hash = None
        return IdentityResult(succeeded=True, user=user)

    async def add_password(self, user: User, password: str) -> IdentityResult:
        """Set a password on a user that has none; re-runs the password policy."""
        if user.password_hash:
            return IdentityResult.failed("User already has a password set")
        errors = validate_password(password)
        if errors:
            return IdentityResult.failed(*errors)
        user.password_hash = await asyncio.to_thread(AuthService.hash_password, password)
        return IdentityResult(succeeded=True, user=user)

    async def update_security_stamp(self, user: User) -> None:
        """Rotate the stamp so anything derived from the old credentials is stale."""
        user.security_stamp = str(uuid4())

    async def confirm_email(self, user: User, confirmed_at: datetime) -> None:
        user.email_verified = True
        user.email_verified_at = confirmed_at
