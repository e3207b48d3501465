"""One-time code model for email confirmation and password reset."""

from datetime import datetime, timedelta
from typing import TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rental_auth.config import settings
from rental_auth.database import Base
from rental_auth.services.shared.datetime_utils import as_utc, utcnow

if TYPE_CHECKING:
    from rental_auth.models.user import User


class OneTimeCode(Base):
    """Hashed 6-digit code; at most one unused row per (user, type)."""

    __tablename__ = "otps"
    __table_args__ = (
        Index(
            "ix_otps_active_otp",
            "user_id",
            "type",
            unique=True,
            sqlite_where=text("is_used = 0"),
            postgresql_where=text("is_used = false"),
        ),
        Index("ix_otps_creation_time", "creation_time"),
        Index("ix_otps_expiration_time", "expiration_time"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    code_hash: Mapped[str] = mapped_column(String(64))  # SHA-256 hex
    type: Mapped[str] = mapped_column(String(32))
    token_jti: Mapped[str | None] = mapped_column(String(36), index=True)
    creation_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    expiration_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    is_used: Mapped[bool] = mapped_column(Boolean, default=False)
    attempts_count: Mapped[int] = mapped_column(Integer, default=0)
    last_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    user: Mapped["User"] = relationship(back_populates="otps")

    @classmethod
    def issue(
        cls,
        user_id: str,
        code_hash: str,
        otp_type: str,
        valid_for: timedelta,
        token_jti: str | None = None,
        now: datetime | None = None,
    ) -> "OneTimeCode":
        """Build a fresh, unused code valid for ``valid_for``."""
        if valid_for <= timedelta(0):
            raise ValueError("OTP validity must be positive")
        now = now or utcnow()
        return cls(
            user_id=user_id,
            code_hash=code_hash,
            type=otp_type,
            token_jti=token_jti,
            creation_time=now,
            expiration_time=now + valid_for,
            is_used=False,
            attempts_count=0,
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= as_utc(self.expiration_time)

    def force_expire(self, now: datetime | None = None) -> None:
        """Pull the expiration back to ``now``; already-expired codes are left alone."""
        now = now or utcnow()
        if not self.is_expired(now):
            self.expiration_time = now

    def mark_as_used(self, now: datetime | None = None) -> bool:
        """Lock the code against reuse. Returns False if it was already used or expired."""
        was_usable = not self.is_used and not self.is_expired(now)
        self.is_used = True
        return was_usable

    def increment_attempts(self, now: datetime | None = None) -> None:
        self.attempts_count = (self.attempts_count or 0) + 1
        self.last_attempt_at = now or utcnow()

    def has_exceeded_max_attempts(self) -> bool:
        return (self.attempts_count or 0) >= settings.otp_max_attempts

    def is_valid_for_verification(self, now: datetime | None = None) -> bool:
        return (
            not self.is_used
            and not self.is_expired(now)
            and not self.has_exceeded_max_attempts()
        )

    def can_resend(self, cooldown: timedelta, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= as_utc(self.creation_time) + cooldown

    def __repr__(self) -> str:
        return f"<OneTimeCode(id={self.id}, user_id={self.user_id}, type='{self.type}')>"
