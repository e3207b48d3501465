"""One-time code data access layer."""

from datetime import datetime

from sqlalchemy import and_, case, delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rental_auth.models import OneTimeCode


class OtpRepository:
    """Queries and bulk statements over the ``otps`` table.

    Reads use ``populate_existing`` so callers always see the committed row
    state rather than a stale identity-map copy.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def add(self, otp: OneTimeCode) -> OneTimeCode:
        """Insert a code and flush so unique index violations surface here."""
        self._db.add(otp)
        await self._db.flush()
        return otp

    async def find_latest_active(
        self,
        user_id: str,
        otp_type: str,
        now: datetime,
        token_jti: str | None = None,
    ) -> OneTimeCode | None:
        """Most recent unused, unexpired code for (user, type)."""
        stmt = select(OneTimeCode).where(
            OneTimeCode.user_id == user_id,
            OneTimeCode.type == otp_type,
            OneTimeCode.is_used.is_(False),
            OneTimeCode.expiration_time > now,
        )
        if token_jti is not None:
            stmt = stmt.where(OneTimeCode.token_jti == token_jti)
        result = await self._db.execute(
            stmt.order_by(OneTimeCode.creation_time.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_latest(self, user_id: str, otp_type: str) -> OneTimeCode | None:
        """Most recent code for (user, type) in any state."""
        result = await self._db.execute(
            select(OneTimeCode)
            .where(OneTimeCode.user_id == user_id, OneTimeCode.type == otp_type)
            .order_by(OneTimeCode.creation_time.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_by_token_jti(self, token_jti: str, otp_type: str) -> OneTimeCode | None:
        """Code linked to a reset-flow token, in any state."""
        result = await self._db.execute(
            select(OneTimeCode)
            .where(OneTimeCode.token_jti == token_jti, OneTimeCode.type == otp_type)
            .order_by(OneTimeCode.creation_time.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def expire_active(self, user_id: str, otp_type: str, now: datetime) -> int:
        """Retire every unused code for (user, type) in a single UPDATE."""
        result = await self._db.execute(
            update(OneTimeCode)
            .where(
                OneTimeCode.user_id == user_id,
                OneTimeCode.type == otp_type,
                OneTimeCode.is_used.is_(False),
            )
            .values(
                is_used=True,
                expiration_time=case(
                    (OneTimeCode.expiration_time > now, now),
                    else_=OneTimeCode.expiration_time,
                ),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def find_purgeable_ids(
        self,
        used_or_expired_before: datetime,
        created_before: datetime,
        limit: int,
    ) -> list[str]:
        """IDs of codes past their retention window, oldest first."""
        result = await self._db.execute(
            select(OneTimeCode.id)
            .where(
                or_(
                    and_(
                        OneTimeCode.is_used.is_(True),
                        OneTimeCode.creation_time < used_or_expired_before,
                    ),
                    OneTimeCode.expiration_time < used_or_expired_before,
                    OneTimeCode.creation_time < created_before,
                )
            )
            .order_by(OneTimeCode.creation_time)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def delete_by_ids(self, otp_ids: list[str]) -> int:
        if not otp_ids:
            return 0
        result = await self._db.execute(
            delete(OneTimeCode)
            .where(OneTimeCode.id.in_(otp_ids))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
