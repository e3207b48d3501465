"""Fixtures for repository unit tests."""

import pytest

from rental_auth.models import User


@pytest.fixture
async def db(db_session):
    return db_session


@pytest.fixture
async def test_user(db) -> User:
    """A verified, active user."""
    user = User(
        email="test@example.com",
        first_name="Test",
        last_name="User",
        password_hash="hash",
        email_verified=True,
    )
    db.add(user)
    await db.commit()
    return user
