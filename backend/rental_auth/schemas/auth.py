"""Schemas for authentication endpoints."""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator

from rental_auth.services.auth.identity_service import validate_password


def _validate_password_strength(v: str) -> str:
    """Shared password validation logic."""
    errors = validate_password(v)
    if errors:
        raise ValueError("; ".join(errors))
    return v


class SignUpRequest(BaseModel):
    """Schema for user registration."""

    email: EmailStr
    password: str = Field(min_length=8, max_length=100)
    first_name: str = Field("", max_length=100)
    last_name: str = Field("", max_length=100)

    @field_validator("password")
    @classmethod
    def validate_password_strength(cls, v: str) -> str:
        return _validate_password_strength(v)


class SignInRequest(BaseModel):
    """Schema for user login."""

    email: str
    password: str


class RefreshTokenRequest(BaseModel):
    """Schema for token refresh; the refresh secret may also arrive as a cookie."""

    email: str
    refresh_token: str | None = None


class CodeRequest(BaseModel):
    """Schema for submitting a 6-digit one-time code."""

    code: str = Field(pattern=r"^\d{6}$")


class SendResetCodeRequest(BaseModel):
    """Schema for starting a password reset."""

    email: str


class ResetPasswordRequest(BaseModel):
    """Schema for the final password reset step."""

    new_password: str = Field(min_length=8, max_length=100)

    @field_validator("new_password")
    @classmethod
    def validate_password_strength(cls, v: str) -> str:
        return _validate_password_strength(v)


class FlowTokenResponse(BaseModel):
    """Short-lived token handed out by verification and reset steps."""

    message: str
    token: str
    expires_at: datetime | None = None


class TokenResponse(BaseModel):
    """Schema for token response."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_at: datetime
    roles: list[str] = []


class MessageResponse(BaseModel):
    """Schema for simple message response."""

    message: str


class UserProfileResponse(BaseModel):
    """Session owner returned by the token check."""

    message: str
    id: str
    email: str
    first_name: str
    last_name: str
    email_verified: bool
    roles: list[str] = []
