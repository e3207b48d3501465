"""One-time code engine: generation, verification and resend cooldowns."""

import logging
import math
import secrets
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from rental_auth.config import Settings, settings as default_settings
from rental_auth.constants import OtpType
from rental_auth.models import OneTimeCode
from rental_auth.services.auth.auth_service import AuthService
from rental_auth.services.repositories import OtpRepository
from rental_auth.services.shared.datetime_utils import as_utc, utcnow

logger = logging.getLogger(__name__)

_CODE_MIN = 100000
_CODE_SPAN = 900000


@dataclass(frozen=True)
class OtpValidation:
    """Outcome of checking a submitted code."""

    is_valid: bool
    otp: OneTimeCode | None = None
    exceeded_max_attempts: bool = False


@dataclass(frozen=True)
class ResendCheck:
    """Whether a new code may be sent, and how long to wait otherwise."""

    can_resend: bool
    remaining: timedelta | None = None

    @property
    def remaining_seconds(self) -> int:
        if self.remaining is None:
            return 0
        return max(math.ceil(self.remaining.total_seconds()), 1)


def generate_code() -> str:
    """Uniform 6-digit code in [100000, 999999]."""
    return str(_CODE_MIN + secrets.randbelow(_CODE_SPAN))


class OtpService:
    """Issues and verifies one-time codes for a single database session."""

    def __init__(self, db: AsyncSession, config: Settings | None = None) -> None:
        self._otps = OtpRepository(db)
        self._settings = config or default_settings

    def validity_for(self, otp_type: OtpType) -> timedelta:
        if otp_type == OtpType.CONFIRM_EMAIL:
            return timedelta(minutes=self._settings.confirm_email_otp_minutes)
        return timedelta(minutes=self._settings.reset_password_otp_minutes)

    def cooldown_for(self, otp_type: OtpType, locked_out: bool = False) -> timedelta:
        if locked_out:
            return timedelta(seconds=self._settings.otp_lockout_cooldown_seconds)
        if otp_type == OtpType.CONFIRM_EMAIL:
            return timedelta(seconds=self._settings.confirm_email_resend_cooldown_seconds)
        return timedelta(seconds=self._settings.reset_password_resend_cooldown_seconds)

    async def generate(
        self,
        user_id: str,
        otp_type: OtpType,
        validity: timedelta | None = None,
        token_jti: str | None = None,
    ) -> tuple[str, OneTimeCode]:
        """Create a new code and return it with its stored record.

        Raises IntegrityError if an active code already exists for (user, type).
        """
        code = generate_code()
        otp = OneTimeCode.issue(
            user_id=user_id,
            code_hash=AuthService.hash_token(code),
            otp_type=otp_type,
            valid_for=validity or self.validity_for(otp_type),
            token_jti=token_jti,
        )
        await self._otps.add(otp)
        logger.debug(f"Issued {otp_type} code for user {user_id}")
        return code, otp

    async def expire_active(self, user_id: str, otp_type: OtpType) -> int:
        """Force-expire and lock every active code for (user, type)."""
        return await self._otps.expire_active(user_id, otp_type, utcnow())

    async def regenerate(
        self,
        user_id: str,
        otp_type: OtpType,
        validity: timedelta | None = None,
        token_jti: str | None = None,
    ) -> tuple[str, OneTimeCode]:
        """Retire the active code (persisted first) and issue a new one."""
        await self.expire_active(user_id, otp_type)
        return await self.generate(user_id, otp_type, validity, token_jti)

    async def validate(
        self,
        user_id: str,
        code: str,
        otp_type: OtpType,
        token_jti: str | None = None,
    ) -> OtpValidation:
        """Check ``code`` against the latest active code for (user, type).

        A mismatch counts as an attempt; reaching the attempt limit locks the
        code. A match returns the record for the caller to consume.
        """
        now = utcnow()
        otp = await self._otps.find_latest_active(user_id, otp_type, now, token_jti)
        if otp is None or not otp.is_valid_for_verification(now):
            return OtpValidation(is_valid=False)

        if not AuthService.verify_token_hash(code, otp.code_hash):
            otp.increment_attempts(now)
            if otp.has_exceeded_max_attempts():
                otp.mark_as_used(now)
                otp.force_expire(now)
                logger.warning(f"{otp_type} code for user {user_id} locked after too many attempts")
                return OtpValidation(is_valid=False, otp=otp, exceeded_max_attempts=True)
            return OtpValidation(is_valid=False, otp=otp)

        return OtpValidation(is_valid=True, otp=otp)

    async def can_resend(self, user_id: str, otp_type: OtpType) -> ResendCheck:
        """Apply the resend cooldown measured from the latest code's creation time."""
        latest = await self._otps.find_latest(user_id, otp_type)
        if latest is None:
            return ResendCheck(can_resend=True)

        now = utcnow()
        cooldown = self.cooldown_for(otp_type, locked_out=latest.has_exceeded_max_attempts())
        if latest.can_resend(cooldown, now):
            return ResendCheck(can_resend=True)
        return ResendCheck(
            can_resend=False,
            remaining=as_utc(latest.creation_time) + cooldown - now,
        )

    async def find_by_token_jti(self, token_jti: str, otp_type: OtpType) -> OneTimeCode | None:
        return await self._otps.find_by_token_jti(token_jti, otp_type)
