"""Authentication service for password hashing, secret hashing and JWT management."""

import hashlib
import hmac
import logging
import secrets
from datetime import UTC, datetime, timedelta
from typing import Any

import bcrypt
import jwt

from rental_auth.config import settings

logger = logging.getLogger(__name__)


class AuthService:
    """Service for authentication primitives."""

    # Pre-computed bcrypt hash for timing-consistent password verification
    # Used when user doesn't exist to prevent email enumeration via timing attacks
    _DUMMY_HASH = "$2b$12$LQv3c1yqBWVHxkd0LHAkCOYz6TtxMQJqhN8/X4.VTtYA9dWQ6E3Ky"

    @staticmethod
    def get_dummy_hash() -> str:
        """Get a dummy password hash for timing-consistent verification."""
        return AuthService._DUMMY_HASH

    @staticmethod
    def hash_password(password: str) -> str:
        """Hash a password using bcrypt."""
        salt = bcrypt.gensalt()
        hashed = bcrypt.hashpw(password.encode("utf-8"), salt)
        return hashed.decode("utf-8")

    @staticmethod
    def verify_password(password: str, hashed: str) -> bool:
        """Verify a password against its hash."""
        try:
            return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
        except Exception as e:
            logger.error(f"Password verification error: {e}")
            return False

    @staticmethod
    def hash_token(token: str) -> str:
        """Hash a secret using SHA-256 (OTP codes and refresh secrets)."""
        return hashlib.sha256(token.encode("utf-8")).hexdigest()

    @staticmethod
    def verify_token_hash(token: str, hashed: str) -> bool:
        """Verify a secret against its SHA-256 hash in constant time."""
        candidate = hashlib.sha256(token.encode("utf-8")).hexdigest()
        return hmac.compare_digest(candidate, hashed)

    @staticmethod
    def generate_refresh_secret() -> str:
        """Random refresh secret (32 bytes of entropy)."""
        return secrets.token_urlsafe(32)

    @staticmethod
    def create_session_token(
        subject: str,
        jti: str,
        claims: dict[str, Any],
        expires_delta: timedelta,
    ) -> tuple[str, datetime]:
        """Sign a JWT carrying ``claims``; returns the token and its expiry."""
        now = datetime.now(UTC)
        expire = now + expires_delta
        payload = {
            **claims,
            "sub": subject,
            "jti": jti,
            "iss": settings.jwt_issuer,
            "aud": settings.jwt_audience,
            "iat": now,
            "exp": expire,
        }
        token = jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
        return token, expire

    @staticmethod
    def decode_session_token(token: str, verify_exp: bool = True) -> dict | None:
        """Decode and validate a JWT token.

        With ``verify_exp=False`` the lifetime check is skipped (refresh flow);
        signature, issuer and audience are always enforced.
        """
        try:
            return jwt.decode(
                token,
                settings.jwt_secret_key,
                algorithms=[settings.jwt_algorithm],
                audience=settings.jwt_audience,
                issuer=settings.jwt_issuer,
                options={"verify_exp": verify_exp},
            )
        except jwt.ExpiredSignatureError:
            logger.debug("Token expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.debug(f"Invalid token: {e}")
            return None
