"""SQLAlchemy ORM models."""

from rental_auth.models.otp import OneTimeCode
from rental_auth.models.user import User
from rental_auth.models.user_role import UserRole
from rental_auth.models.user_token import UserToken

__all__ = [
    "OneTimeCode",
    "User",
    "UserRole",
    "UserToken",
]
