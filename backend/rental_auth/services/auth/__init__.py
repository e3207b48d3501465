"""Authentication services.

Handles password and secret hashing, one-time codes, token records and
authorization policies. The flow orchestrator lives in ``orchestrator``.
"""

from .auth_service import AuthService
from .identity_service import IdentityResult, IdentityService
from .otp_service import OtpService, OtpValidation, ResendCheck
from .token_store import IssuedToken, RefreshFailure, RefreshValidation, TokenStore

__all__ = [
    "AuthService",
    "IdentityResult",
    "IdentityService",
    "IssuedToken",
    "OtpService",
    "OtpValidation",
    "RefreshFailure",
    "RefreshValidation",
    "ResendCheck",
    "TokenStore",
]
