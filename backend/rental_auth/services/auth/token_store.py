"""Token store: issues, validates and revokes server-side token records."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from rental_auth.config import Settings, settings as default_settings
from rental_auth.constants import ClaimNames, ResetPasswordStage, TokenType
from rental_auth.models import User, UserToken
from rental_auth.services.auth.auth_service import AuthService
from rental_auth.services.repositories import UserTokenRepository
from rental_auth.services.shared.datetime_utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IssuedToken:
    """A freshly signed JWT and its backing record."""

    token: str
    jti: str
    expires_at: datetime
    record: UserToken
    refresh_secret: str | None = None


class RefreshFailure(StrEnum):
    NULL_TOKEN = "null_token"
    INVALID_SECRET = "invalid_secret"
    REVOKED = "revoked"


@dataclass(frozen=True)
class RefreshValidation:
    """Outcome of checking a presented refresh secret."""

    token: UserToken | None = None
    failure: RefreshFailure | None = None

    @property
    def succeeded(self) -> bool:
        return self.failure is None


class TokenStore:
    """Mints JWTs and keeps their records authoritative for revocation."""

    def __init__(self, db: AsyncSession, config: Settings | None = None) -> None:
        self._tokens = UserTokenRepository(db)
        self._settings = config or default_settings

    async def _issue(
        self,
        user: User,
        token_type: TokenType,
        claims: dict,
        jwt_lifetime: timedelta,
        record_lifetime: timedelta,
        jti: str | None = None,
        refresh_secret: str | None = None,
    ) -> IssuedToken:
        jti = jti or str(uuid4())
        token, expires_at = AuthService.create_session_token(
            subject=user.id,
            jti=jti,
            claims={ClaimNames.EMAIL: user.email, **claims},
            expires_delta=jwt_lifetime,
        )
        now = utcnow()
        record = UserToken(
            type=token_type,
            user_id=user.id,
            jwt_id=jti,
            refresh_token_hash=AuthService.hash_token(refresh_secret) if refresh_secret else None,
            created_at=now,
            expiry_date=now + record_lifetime,
            is_used=False,
            is_revoked=False,
        )
        await self._tokens.add(record)
        return IssuedToken(
            token=token,
            jti=jti,
            expires_at=expires_at,
            record=record,
            refresh_secret=refresh_secret,
        )

    async def issue_auth_token(self, user: User, roles: list[str]) -> IssuedToken:
        """Revoke the user's current session and issue a new access token + refresh secret."""
        await self.revoke_for_user(user.id, TokenType.AUTH)
        return await self._issue(
            user,
            TokenType.AUTH,
            claims={ClaimNames.ROLES: roles},
            jwt_lifetime=timedelta(minutes=self._settings.access_token_expire_minutes),
            record_lifetime=timedelta(days=self._settings.refresh_token_expire_days),
            refresh_secret=AuthService.generate_refresh_secret(),
        )

    async def issue_verification_token(self, user: User, minutes: int | None = None) -> IssuedToken:
        """Issue the short-lived token that gates email confirmation."""
        lifetime = timedelta(minutes=minutes or self._settings.verification_token_minutes)
        await self.revoke_for_user(user.id, TokenType.VERIFICATION)
        return await self._issue(
            user,
            TokenType.VERIFICATION,
            claims={ClaimNames.IS_VERIFICATION_TOKEN: "true"},
            jwt_lifetime=lifetime,
            record_lifetime=lifetime,
        )

    async def issue_reset_token(
        self,
        user: User,
        stage: ResetPasswordStage,
        minutes: int | None = None,
        jti: str | None = None,
    ) -> IssuedToken:
        """Issue a reset-flow token for ``stage``.

        The caller must revoke the previous stage's jti first; an unrevoked
        reset token for the user makes the insert fail on the unique index.
        """
        if minutes is None:
            minutes = (
                self._settings.reset_verified_token_minutes
                if stage == ResetPasswordStage.VERIFIED
                else self._settings.reset_token_minutes
            )
        lifetime = timedelta(minutes=minutes)
        return await self._issue(
            user,
            TokenType.RESET_PASSWORD,
            claims={
                ClaimNames.IS_RESET_TOKEN: "true",
                ClaimNames.RESET_TOKEN_STAGE: str(stage),
            },
            jwt_lifetime=lifetime,
            record_lifetime=lifetime,
            jti=jti,
        )

    async def validate_refresh(
        self, user_id: str, presented_secret: str | None, jti: str | None
    ) -> RefreshValidation:
        """Check a refresh secret against the auth token record for (user, jti)."""
        if not presented_secret or not jti:
            return RefreshValidation(failure=RefreshFailure.NULL_TOKEN)

        token = await self._tokens.find_for_user(user_id, jti, TokenType.AUTH)
        if token is None or not token.refresh_token_hash:
            return RefreshValidation(failure=RefreshFailure.NULL_TOKEN)
        if not AuthService.verify_token_hash(presented_secret, token.refresh_token_hash):
            return RefreshValidation(token=token, failure=RefreshFailure.INVALID_SECRET)
        if not token.is_valid(utcnow()):
            return RefreshValidation(token=token, failure=RefreshFailure.REVOKED)
        return RefreshValidation(token=token)

    async def revoke(self, jti: str) -> int:
        """Revoke a single token by jti. Idempotent."""
        count = await self._tokens.revoke_by_jti(jti, utcnow())
        logger.debug(f"Revoked {count} token(s) with jti {jti}")
        return count

    async def revoke_for_user(self, user_id: str, token_type: TokenType) -> int:
        """Revoke every live token of ``token_type`` for the user. Idempotent."""
        count = await self._tokens.revoke_for_user(user_id, token_type, utcnow())
        if count:
            logger.debug(f"Revoked {count} {token_type} token(s) for user {user_id}")
        return count

    async def find_by_jti(self, jti: str) -> UserToken | None:
        return await self._tokens.find_by_jti(jti)

    async def is_valid_by_jti(self, jti: str | None) -> bool:
        """True only if the record exists and is neither revoked, used nor expired."""
        if not jti:
            return False
        try:
            token = await self._tokens.find_by_jti(jti)
        except SQLAlchemyError:
            logger.exception(f"Token lookup failed for jti {jti}")
            return False
        return token is not None and token.is_valid(utcnow())
