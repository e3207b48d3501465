"""Shared test fixtures for authentication tests."""

from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from rental_auth.database import Base, build_session_factory, get_db
from rental_auth.main import app
from rental_auth.models import User
from rental_auth.rate_limiter import limiter
from rental_auth.services.auth.auth_service import AuthService

EMAIL_SERVICE = "rental_auth.services.auth.orchestrator.EmailService"
DEFAULT_PASSWORD = "Secure123"


@pytest.fixture
async def engine():
    """In-memory SQLite engine with every table created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker:
    return build_session_factory(engine)


@pytest.fixture
async def db_session(session_maker):
    """A single session for service-level tests."""
    async with session_maker() as session:
        yield session


@pytest.fixture
async def auth_client(session_maker):
    """Create an async test client backed by the in-memory database.

    Yields a tuple of (AsyncClient, SessionMaker) for use in tests.
    """
    limiter.reset()

    async def override_get_db():
        async with session_maker() as db:
            yield db

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client, session_maker

    app.dependency_overrides.clear()


@pytest.fixture
def mock_emails():
    """Patch every outgoing email used by the auth flows."""
    with (
        patch(f"{EMAIL_SERVICE}.send_confirm_email_code", new_callable=AsyncMock) as confirm,
        patch(f"{EMAIL_SERVICE}.send_reset_password_code", new_callable=AsyncMock) as reset,
        patch(f"{EMAIL_SERVICE}.send_welcome_email", new_callable=AsyncMock) as welcome,
        patch(
            f"{EMAIL_SERVICE}.send_password_changed_notification", new_callable=AsyncMock
        ) as changed,
    ):
        for mock in (confirm, reset, welcome, changed):
            mock.return_value = True
        yield {
            "confirm": confirm,
            "reset": reset,
            "welcome": welcome,
            "password_changed": changed,
        }


async def create_user(
    session_maker,
    email: str = "renter@example.com",
    password: str = DEFAULT_PASSWORD,
    verified: bool = True,
) -> User:
    """Insert a user directly, bypassing the sign-up flow."""
    async with session_maker() as db:
        user = User(
            email=email,
            password_hash=AuthService.hash_password(password),
            email_verified=verified,
        )
        db.add(user)
        await db.commit()
        return user


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}
