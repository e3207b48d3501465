"""Add auth core tables (users, user_roles, user_tokens, otps)

Revision ID: add_rental_auth_tables
Revises:
Create Date: 2026-10-19

This migration adds:
1. users and user_roles tables
2. user_tokens table backing every issued JWT (auth, verification, reset)
3. otps table for hashed one-time codes

Partial unique indexes allow one unused code per (user, type) and one
unrevoked token per (user, type).
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "add_rental_auth_tables"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # Create users table
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True, index=True),
        sa.Column("first_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("last_name", sa.String(100), nullable=False, server_default=""),
        sa.Column("password_hash", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("email_verified", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("email_verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("security_stamp", sa.String(36), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_users_email_verified", "users", ["email_verified"])

    # Create user_roles table
    op.create_table(
        "user_roles",
        sa.Column(
            "user_id",
            sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("role", sa.String(64), primary_key=True),
    )

    # Create user_tokens table
    op.create_table(
        "user_tokens",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column(
            "user_id",
            sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=True,
            index=True,
        ),
        sa.Column("refresh_token_hash", sa.String(64), nullable=True),
        sa.Column("jwt_id", sa.String(36), nullable=False, unique=True, index=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_used", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("is_revoked", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_user_tokens_active_token",
        "user_tokens",
        ["user_id", "type"],
        unique=True,
        postgresql_where=sa.text("is_revoked = false"),
    )
    op.create_index("ix_user_tokens_type_expiry", "user_tokens", ["type", "expiry_date"])
    op.create_index("ix_user_tokens_type_created", "user_tokens", ["type", "created_at"])

    # Create otps table
    op.create_table(
        "otps",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(36),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("code_hash", sa.String(64), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("token_jti", sa.String(36), nullable=True, index=True),
        sa.Column("creation_time", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("expiration_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_used", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("attempts_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_otps_active_otp",
        "otps",
        ["user_id", "type"],
        unique=True,
        postgresql_where=sa.text("is_used = false"),
    )
    op.create_index("ix_otps_creation_time", "otps", ["creation_time"])
    op.create_index("ix_otps_expiration_time", "otps", ["expiration_time"])


def downgrade() -> None:
    op.drop_index("ix_otps_expiration_time", table_name="otps")
    op.drop_index("ix_otps_creation_time", table_name="otps")
    op.drop_index("ix_otps_active_otp", table_name="otps")
    op.drop_table("otps")

    op.drop_index("ix_user_tokens_type_created", table_name="user_tokens")
    op.drop_index("ix_user_tokens_type_expiry", table_name="user_tokens")
    op.drop_index("ix_user_tokens_active_token", table_name="user_tokens")
    op.drop_table("user_tokens")

    op.drop_table("user_roles")

    op.drop_index("ix_users_email_verified", table_name="users")
    op.drop_table("users")
