"""Token record data access layer."""

from datetime import datetime

from sqlalchemy import case, delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rental_auth.constants import TokenType
from rental_auth.models import UserToken


class UserTokenRepository:
    """Queries and bulk statements over the ``user_tokens`` table.

    Naming conventions:
    - find_* : Query that may return None
    - revoke_* : Single conditional UPDATE, returns affected row count
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def add(self, token: UserToken) -> UserToken:
        """Insert a token record and flush so unique index violations surface here."""
        self._db.add(token)
        await self._db.flush()
        return token

    async def find_by_jti(self, jti: str) -> UserToken | None:
        result = await self._db.execute(
            select(UserToken)
            .where(UserToken.jwt_id == jti)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_for_user(self, user_id: str, jti: str, token_type: str) -> UserToken | None:
        """Token record for (user, jti, type) in any state."""
        result = await self._db.execute(
            select(UserToken)
            .where(
                UserToken.user_id == user_id,
                UserToken.jwt_id == jti,
                UserToken.type == token_type,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def _revoke_statement(self, now: datetime):
        return (
            update(UserToken)
            .where(UserToken.is_revoked.is_(False))
            .values(
                is_revoked=True,
                is_used=True,
                revoked_at=now,
                expiry_date=case(
                    (UserToken.expiry_date > now, now),
                    else_=UserToken.expiry_date,
                ),
            )
            .execution_options(synchronize_session=False)
        )

    async def revoke_by_jti(self, jti: str, now: datetime) -> int:
        result = await self._db.execute(
            self._revoke_statement(now).where(UserToken.jwt_id == jti)
        )
        return result.rowcount

    async def revoke_for_user(self, user_id: str, token_type: str, now: datetime) -> int:
        result = await self._db.execute(
            self._revoke_statement(now).where(
                UserToken.user_id == user_id, UserToken.type == token_type
            )
        )
        return result.rowcount

    async def revoke_by_ids(self, token_ids: list[str], now: datetime) -> int:
        if not token_ids:
            return 0
        result = await self._db.execute(
            self._revoke_statement(now).where(UserToken.id.in_(token_ids))
        )
        return result.rowcount

    async def find_purgeable_auth_ids(self, expired_before: datetime, limit: int) -> list[str]:
        """Used or revoked auth tokens that expired before ``expired_before``."""
        result = await self._db.execute(
            select(UserToken.id)
            .where(
                UserToken.type == TokenType.AUTH,
                UserToken.expiry_date < expired_before,
                or_(UserToken.is_used.is_(True), UserToken.is_revoked.is_(True)),
            )
            .order_by(UserToken.expiry_date)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def find_stale_reset_ids(self, created_before: datetime, limit: int) -> list[str]:
        """Unrevoked reset tokens issued at or before ``created_before``."""
        result = await self._db.execute(
            select(UserToken.id)
            .where(
                UserToken.type == TokenType.RESET_PASSWORD,
                UserToken.is_revoked.is_(False),
                UserToken.created_at <= created_before,
            )
            .order_by(UserToken.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def find_purgeable_reset_ids(
        self, created_before: datetime, now: datetime, limit: int
    ) -> list[str]:
        """Finished reset tokens older than the retention window."""
        result = await self._db.execute(
            select(UserToken.id)
            .where(
                UserToken.type == TokenType.RESET_PASSWORD,
                UserToken.created_at <= created_before,
                or_(
                    UserToken.is_revoked.is_(True),
                    UserToken.is_used.is_(True),
                    UserToken.expiry_date <= now,
                ),
            )
            .order_by(UserToken.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def delete_by_ids(self, token_ids: list[str]) -> int:
        if not token_ids:
            return 0
        result = await self._db.execute(
            delete(UserToken)
            .where(UserToken.id.in_(token_ids))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
