"""Server-side token record backing every issued JWT."""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rental_auth.database import Base
from rental_auth.services.shared.datetime_utils import as_utc, utcnow

if TYPE_CHECKING:
    from rental_auth.models.user import User


class UserToken(Base):
    """Auth, verification and reset-password token records, keyed by JWT id."""

    __tablename__ = "user_tokens"
    __table_args__ = (
        Index(
            "ix_user_tokens_active_token",
            "user_id",
            "type",
            unique=True,
            sqlite_where=text("is_revoked = 0"),
            postgresql_where=text("is_revoked = false"),
        ),
        Index("ix_user_tokens_type_expiry", "type", "expiry_date"),
        Index("ix_user_tokens_type_created", "type", "created_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    type: Mapped[str] = mapped_column(String(32))
    user_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    refresh_token_hash: Mapped[str | None] = mapped_column(String(64))  # SHA-256 hex
    jwt_id: Mapped[str] = mapped_column(String(36), unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    expiry_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    is_used: Mapped[bool] = mapped_column(Boolean, default=False)
    is_revoked: Mapped[bool] = mapped_column(Boolean, default=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    user: Mapped["User | None"] = relationship(back_populates="tokens")

    def is_expired(self, now: datetime | None = None) -> bool:
        """Revoked tokens count as expired regardless of their expiry date."""
        return self.is_revoked or (now or utcnow()) >= as_utc(self.expiry_date)

    def is_valid(self, now: datetime | None = None) -> bool:
        return not self.is_expired(now) and not self.is_used

    def __repr__(self) -> str:
        return f"<UserToken(id={self.id}, type='{self.type}', jwt_id='{self.jwt_id}')>"
