"""Application constants to avoid magic strings."""

from enum import StrEnum


class OtpType(StrEnum):
    """Purpose a one-time code was issued for."""

    CONFIRM_EMAIL = "confirm_email"
    RESET_PASSWORD = "reset_password"


class TokenType(StrEnum):
    """Kinds of server-side token records."""

    AUTH = "auth_token"
    VERIFICATION = "verification_token"
    RESET_PASSWORD = "reset_password_token"


class ResetPasswordStage(StrEnum):
    """Stages of the password reset flow, carried in the reset token claim."""

    AWAITING_VERIFICATION = "AwaitingVerification"
    VERIFIED = "Verified"
    COMPLETED = "Completed"


class ClaimNames:
    """Custom JWT claim names."""

    EMAIL = "email"
    ROLES = "roles"
    IS_VERIFICATION_TOKEN = "is_verification_token"
    IS_RESET_TOKEN = "is_reset_token"
    RESET_TOKEN_STAGE = "reset_token_stage"


class Roles:
    """Role names assigned by the auth core."""

    CUSTOMER = "Customer"


class Cookies:
    """Cookie names read by the request context."""

    ACCESS_TOKEN = "accessToken"
    REFRESH_TOKEN = "refreshToken"


class Messages:
    """User-facing messages returned by the auth flows."""

    INVALID_OR_EXPIRED_CODE = "Invalid or expired code"
    INVALID_CREDENTIALS = "Invalid email or password"
    EMAIL_ALREADY_EXISTS = "Email already registered"
    EMAIL_ALREADY_VERIFIED = "Email already verified"
    EMAIL_NOT_VERIFIED = "Email not verified"
    ACCOUNT_DISABLED = "User account is disabled"
    SIGN_UP_SUCCESS = "Registration successful. Please check your email for the verification code."
    SIGN_IN_SUCCESS = "Signed in successfully"
    EMAIL_CONFIRMED = "Email verified successfully"
    VERIFICATION_CODE_SENT = "A new verification code has been sent"
    RESET_CODE_SENT = "If an account exists with that email, a reset code has been sent"
    RESET_CODE_VERIFIED = "Reset code verified"
    PASSWORD_RESET = "Password has been reset successfully"
    LOGGED_OUT = "Logged out successfully"
    LOGGED_OUT_ALL = "Logged out from all devices"
    TOKEN_REFRESHED = "Token refreshed"
    TOKEN_VALID = "Token is valid"
    MISSING_TOKEN = "Missing token"
    INVALID_TOKEN = "Invalid or expired token"
    SESSION_EXPIRED = "Session expired, please sign in again"
    ACCESS_DENIED = "Access denied"
    USER_NOT_FOUND = "User not found"
    TOO_SOON = "Please wait {seconds} seconds before requesting a new code"
    INTERNAL_ERROR = "An unexpected error occurred. Please try again later."
