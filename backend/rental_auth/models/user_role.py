"""Role membership model."""

from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rental_auth.database import Base

if TYPE_CHECKING:
    from rental_auth.models.user import User


class UserRole(Base):
    """Opaque role name granted to a user."""

    __tablename__ = "user_roles"

    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    role: Mapped[str] = mapped_column(String(64), primary_key=True)

    user: Mapped["User"] = relationship(back_populates="roles")

    def __repr__(self) -> str:
        return f"<UserRole(user_id={self.user_id}, role='{self.role}')>"
