"""Auth flows: sign-up, sign-in, refresh, email confirmation, password reset and logout.

Each flow runs in one transaction, catches failures at its own boundary and
returns a FlowResult. Emails go out only after the transaction has committed,
and a failed send never fails the flow.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from rental_auth.config import Settings, settings as default_settings
from rental_auth.constants import Messages, OtpType, ResetPasswordStage, TokenType
from rental_auth.database import UnitOfWork
from rental_auth.models import User
from rental_auth.schemas.auth import SignInRequest, SignUpRequest
from rental_auth.services.auth.auth_service import AuthService
from rental_auth.services.auth.identity_service import IdentityService
from rental_auth.services.auth.otp_service import OtpService
from rental_auth.services.auth.policies import TokenPolicy, claims_satisfy
from rental_auth.services.auth.request_context import RequestContext
from rental_auth.services.auth.results import FlowResult
from rental_auth.services.auth.token_store import IssuedToken, RefreshFailure, TokenStore
from rental_auth.services.email_service import EmailService
from rental_auth.services.repositories import NotFoundError, is_unique_violation
from rental_auth.services.shared.datetime_utils import utcnow
from rental_auth.services.shared.masking import obfuscate_email

logger = logging.getLogger(__name__)


def _flow_token(issued: IssuedToken) -> dict:
    return {"token": issued.token, "expires_at": issued.expires_at}


_EMPTY_FLOW_TOKEN = {"token": "", "expires_at": None}


class AuthOrchestrator:
    """Runs the auth flows against a single request-scoped session."""

    def __init__(self, db: AsyncSession, config: Settings | None = None) -> None:
        self._settings = config or default_settings
        self._uow = UnitOfWork(db)
        self._identity = IdentityService(db)
        self._otps = OtpService(db, self._settings)
        self._tokens = TokenStore(db, self._settings)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _failure(self, flow: str, exc: Exception) -> FlowResult:
        if is_unique_violation(exc):
            logger.warning(f"{flow}: unique constraint violation, rolled back: {exc}")
            return FlowResult.bad_request(Messages.INVALID_OR_EXPIRED_CODE)
        logger.exception(f"{flow} failed")
        return FlowResult.internal_error()

    async def _equalize_latency(self) -> None:
        """Random delay on "user not found" paths so they cost as much as real ones."""
        low = self._settings.enumeration_delay_min_ms
        high = max(low, self._settings.enumeration_delay_max_ms)
        await asyncio.sleep(random.uniform(low, high) / 1000)

    async def _current_user(self, ctx: RequestContext) -> User | None:
        if not ctx.user_id:
            return None
        try:
            return await self._identity.get_by_id(ctx.user_id)
        except NotFoundError:
            logger.warning(f"Token subject {ctx.user_id} no longer exists")
            return None

    async def _deliver(self, description: str, send: Awaitable[bool]) -> bool:
        """Await an email send; failures are logged and never propagate."""
        try:
            sent = await send
        except Exception:
            logger.exception(f"Sending {description} email failed")
            return False
        if not sent:
            logger.warning(f"{description} email was not delivered")
        return sent

    def _too_soon(self, remaining_seconds: int) -> FlowResult:
        return FlowResult.bad_request(Messages.TOO_SOON.format(seconds=remaining_seconds))

    # ------------------------------------------------------------------
    # Registration and sign-in
    # ------------------------------------------------------------------

    async def sign_up(self, data: SignUpRequest) -> FlowResult:
        """Register (or re-register an unconfirmed) user and send a confirmation code."""
        async with self._uow.transaction() as tx:
            try:
                user = await self._identity.find_by_email(data.email)
                if user is not None and user.email_verified:
                    return FlowResult.bad_request(Messages.EMAIL_ALREADY_EXISTS)

                if user is None:
                    result = await self._identity.create_user(
                        data.email, data.password, data.first_name, data.last_name
                    )
                    if not result.succeeded:
                        return FlowResult.bad_request("Registration failed", result.errors)
                    user = result.user
                    await self._identity.add_role(user, self._settings.default_user_role)
                else:
                    await self._otps.expire_active(user.id, OtpType.CONFIRM_EMAIL)

                code, _ = await self._otps.generate(user.id, OtpType.CONFIRM_EMAIL)
                issued = await self._tokens.issue_verification_token(user)
                await tx.commit()
            except Exception as exc:
                return self._failure("Sign-up", exc)

        await self._deliver(
            "confirmation",
            EmailService.send_confirm_email_code(
                user.email, code, self._settings.confirm_email_otp_minutes
            ),
        )
        logger.info(f"User registered (pending verification): {user.id}")
        return FlowResult.created(Messages.SIGN_UP_SUCCESS, _flow_token(issued))

    async def sign_in(self, data: SignInRequest) -> FlowResult:
        """Check credentials and open a new session (previous session is revoked)."""
        async with self._uow.transaction() as tx:
            try:
                user = await self._identity.find_by_email(data.email)
                if not await self._identity.check_password(user, data.password):
                    logger.warning(f"Failed sign-in attempt for {obfuscate_email(data.email)}")
                    return FlowResult.unauthorized(Messages.INVALID_CREDENTIALS)
                if not user.is_active:
                    return FlowResult.forbidden(Messages.ACCOUNT_DISABLED)
                if not user.email_verified:
                    return FlowResult.forbidden(Messages.EMAIL_NOT_VERIFIED)

                roles = await self._identity.get_roles(user)
                issued = await self._tokens.issue_auth_token(user, roles)
                await tx.commit()
            except Exception as exc:
                return self._failure("Sign-in", exc)

        logger.info(f"User signed in: {user.id}")
        return FlowResult.ok(Messages.SIGN_IN_SUCCESS, self._session_payload(issued, roles))

    def _session_payload(self, issued: IssuedToken, roles: list[str]) -> dict:
        return {
            "access_token": issued.token,
            "refresh_token": issued.refresh_secret,
            "token_type": "bearer",
            "expires_at": issued.expires_at,
            "roles": roles,
        }

    async def refresh_token(
        self, ctx: RequestContext, email: str, refresh_secret: str | None = None
    ) -> FlowResult:
        """Rotate the session: revoke the presented token and issue a new one.

        Presenting the secret of an already-revoked session is treated as
        token theft and signs the user out everywhere.
        """
        secret = refresh_secret or ctx.refresh_secret
        if not secret or not ctx.raw_auth_token:
            return FlowResult.unauthorized(Messages.MISSING_TOKEN)

        async with self._uow.transaction() as tx:
            try:
                user = await self._identity.find_by_email(email)
                if user is None:
                    await self._equalize_latency()
                    return FlowResult.unauthorized(Messages.INVALID_TOKEN)

                claims = AuthService.decode_session_token(ctx.raw_auth_token, verify_exp=False)
                if (
                    not claims_satisfy(TokenPolicy.VALID_TOKEN, claims)
                    or claims.get("sub") != user.id
                ):
                    return FlowResult.unauthorized(Messages.INVALID_TOKEN)

                validation = await self._tokens.validate_refresh(user.id, secret, claims["jti"])
                if not validation.succeeded:
                    if (
                        validation.failure == RefreshFailure.REVOKED
                        and validation.token.is_revoked
                    ):
                        revoked = await self._tokens.revoke_for_user(user.id, TokenType.AUTH)
                        await tx.commit()
                        logger.error(
                            f"Refresh token reuse detected for user {user.id}; "
                            f"revoked {revoked} active session(s)"
                        )
                        return FlowResult.unauthorized(Messages.ACCESS_DENIED)
                    logger.info(f"Refresh rejected for user {user.id}: {validation.failure}")
                    return FlowResult.unauthorized(Messages.SESSION_EXPIRED)

                if not user.is_active:
                    return FlowResult.forbidden(Messages.ACCOUNT_DISABLED)
                if not user.email_verified:
                    return FlowResult.bad_request(Messages.EMAIL_NOT_VERIFIED)

                await self._tokens.revoke(validation.token.jwt_id)
                roles = await self._identity.get_roles(user)
                issued = await self._tokens.issue_auth_token(user, roles)
                await tx.commit()
            except Exception as exc:
                return self._failure("Token refresh", exc)

        return FlowResult.ok(Messages.TOKEN_REFRESHED, self._session_payload(issued, roles))

    # ------------------------------------------------------------------
    # Email confirmation
    # ------------------------------------------------------------------

    async def confirm_email(self, ctx: RequestContext, code: str) -> FlowResult:
        """Consume the confirmation code and mark the email verified."""
        async with self._uow.transaction() as tx:
            try:
                user = await self._current_user(ctx)
                if user is None:
                    return FlowResult.unauthorized(Messages.USER_NOT_FOUND)
                if user.email_verified:
                    return FlowResult.bad_request(Messages.EMAIL_ALREADY_VERIFIED)

                validation = await self._otps.validate(user.id, code, OtpType.CONFIRM_EMAIL)
                if not validation.is_valid:
                    if validation.exceeded_max_attempts:
                        await self._tokens.revoke_for_user(user.id, TokenType.VERIFICATION)
                    await tx.commit()
                    return FlowResult.bad_request(Messages.INVALID_OR_EXPIRED_CODE)

                now = utcnow()
                validation.otp.mark_as_used(now)
                validation.otp.force_expire(now)
                await self._identity.confirm_email(user, now)
                await self._tokens.revoke_for_user(user.id, TokenType.VERIFICATION)
                await tx.commit()
            except Exception as exc:
                return self._failure("Email confirmation", exc)

        await self._deliver("welcome", EmailService.send_welcome_email(user.email))
        logger.info(f"Email verified for user: {user.id}")
        return FlowResult.ok(Messages.EMAIL_CONFIRMED)

    async def resend_verification_code(self, ctx: RequestContext) -> FlowResult:
        """Replace the confirmation code and verification token, subject to the cooldown."""
        async with self._uow.transaction() as tx:
            try:
                user = await self._current_user(ctx)
                if user is None:
                    return FlowResult.unauthorized(Messages.USER_NOT_FOUND)
                if user.email_verified:
                    return FlowResult.bad_request(Messages.EMAIL_ALREADY_VERIFIED)

                check = await self._otps.can_resend(user.id, OtpType.CONFIRM_EMAIL)
                if not check.can_resend:
                    return self._too_soon(check.remaining_seconds)

                code, _ = await self._otps.regenerate(user.id, OtpType.CONFIRM_EMAIL)
                issued = await self._tokens.issue_verification_token(user)
                await tx.commit()
            except Exception as exc:
                return self._failure("Resend verification code", exc)

        await self._deliver(
            "confirmation",
            EmailService.send_confirm_email_code(
                user.email, code, self._settings.confirm_email_otp_minutes
            ),
        )
        return FlowResult.ok(Messages.VERIFICATION_CODE_SENT, _flow_token(issued))

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    async def send_reset_code(self, email: str) -> FlowResult:
        """Start a reset: stage-1 token plus a code linked to its jti.

        Unknown emails get the same generic success, after a random delay.
        """
        async with self._uow.transaction() as tx:
            try:
                user = await self._identity.find_by_email(email)
                if user is None:
                    await self._equalize_latency()
                    logger.info(f"Reset code requested for unknown email {obfuscate_email(email)}")
                    return FlowResult.ok(Messages.RESET_CODE_SENT, dict(_EMPTY_FLOW_TOKEN))

                await self._otps.expire_active(user.id, OtpType.RESET_PASSWORD)
                await self._tokens.revoke_for_user(user.id, TokenType.RESET_PASSWORD)
                issued = await self._tokens.issue_reset_token(
                    user, ResetPasswordStage.AWAITING_VERIFICATION
                )
                code, _ = await self._otps.generate(
                    user.id, OtpType.RESET_PASSWORD, token_jti=issued.jti
                )
                await tx.commit()
            except Exception as exc:
                return self._failure("Send reset code", exc)

        sent = await self._deliver(
            "reset code",
            EmailService.send_reset_password_code(
                user.email, code, self._settings.reset_password_otp_minutes
            ),
        )
        if not sent:
            return FlowResult.ok(Messages.RESET_CODE_SENT, dict(_EMPTY_FLOW_TOKEN))
        return FlowResult.ok(Messages.RESET_CODE_SENT, _flow_token(issued))

    async def verify_reset_code(self, ctx: RequestContext, code: str) -> FlowResult:
        """Stage 1 -> 2: consume the code and swap the token for a verified-stage one."""
        async with self._uow.transaction() as tx:
            try:
                user = await self._current_user(ctx)
                if user is None:
                    return FlowResult.unauthorized(Messages.USER_NOT_FOUND)

                validation = await self._otps.validate(
                    user.id, code, OtpType.RESET_PASSWORD, token_jti=ctx.token_jti
                )
                if not validation.is_valid:
                    if validation.exceeded_max_attempts:
                        await self._tokens.revoke(ctx.token_jti)
                    await tx.commit()
                    return FlowResult.bad_request(Messages.INVALID_OR_EXPIRED_CODE)

                otp = validation.otp
                now = utcnow()
                otp.mark_as_used(now)
                otp.force_expire(now)
                await self._tokens.revoke(ctx.token_jti)
                issued = await self._tokens.issue_reset_token(user, ResetPasswordStage.VERIFIED)
                otp.token_jti = issued.jti
                await tx.commit()
            except Exception as exc:
                return self._failure("Verify reset code", exc)

        return FlowResult.ok(Messages.RESET_CODE_VERIFIED, _flow_token(issued))

    async def reset_password(self, ctx: RequestContext, new_password: str) -> FlowResult:
        """Stage 2 -> 3: set the new password and sign the user out everywhere."""
        async with self._uow.transaction() as tx:
            try:
                user = await self._current_user(ctx)
                if user is None:
                    return FlowResult.bad_request(Messages.USER_NOT_FOUND)

                otp = await self._otps.find_by_token_jti(ctx.token_jti, OtpType.RESET_PASSWORD)
                if otp is None or otp.user_id != user.id:
                    return FlowResult.bad_request(Messages.INVALID_OR_EXPIRED_CODE)

                await self._identity.remove_password(user)
                result = await self._identity.add_password(user, new_password)
                if not result.succeeded:
                    return FlowResult.bad_request("Password does not meet requirements", result.errors)

                otp.force_expire()
                await self._tokens.revoke_for_user(user.id, TokenType.AUTH)
                await self._tokens.revoke(ctx.token_jti)
                await self._identity.update_security_stamp(user)
                await tx.commit()
            except Exception as exc:
                return self._failure("Reset password", exc)

        await self._deliver(
            "password changed", EmailService.send_password_changed_notification(user.email)
        )
        logger.info(f"Password reset completed for user: {user.id}")
        return FlowResult.ok(Messages.PASSWORD_RESET)

    async def resend_reset_code(self, ctx: RequestContext) -> FlowResult:
        """Issue a fresh stage-1 token and code, subject to the cooldown."""
        async with self._uow.transaction() as tx:
            try:
                user = await self._current_user(ctx)
                if user is None:
                    return FlowResult.unauthorized(Messages.USER_NOT_FOUND)

                check = await self._otps.can_resend(user.id, OtpType.RESET_PASSWORD)
                if not check.can_resend:
                    return self._too_soon(check.remaining_seconds)

                await self._tokens.revoke(ctx.token_jti)
                new_jti = str(uuid4())
                code, _ = await self._otps.regenerate(
                    user.id, OtpType.RESET_PASSWORD, token_jti=new_jti
                )
                issued = await self._tokens.issue_reset_token(
                    user, ResetPasswordStage.AWAITING_VERIFICATION, jti=new_jti
                )
                await tx.commit()
            except Exception as exc:
                return self._failure("Resend reset code", exc)

        await self._deliver(
            "reset code",
            EmailService.send_reset_password_code(
                user.email, code, self._settings.reset_password_otp_minutes
            ),
        )
        return FlowResult.ok(Messages.RESET_CODE_SENT, _flow_token(issued))

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    async def logout(self, ctx: RequestContext) -> FlowResult:
        """Revoke the current session. Idempotent."""
        async with self._uow.transaction() as tx:
            try:
                await self._tokens.revoke(ctx.token_jti)
                await tx.commit()
            except Exception as exc:
                return self._failure("Logout", exc)

        logger.info(f"User logged out: {ctx.user_id}")
        return FlowResult.ok(Messages.LOGGED_OUT)

    async def logout_all(self, ctx: RequestContext) -> FlowResult:
        """Revoke every session of the current user. Idempotent."""
        async with self._uow.transaction() as tx:
            try:
                count = await self._tokens.revoke_for_user(ctx.user_id, TokenType.AUTH)
                await tx.commit()
            except Exception as exc:
                return self._failure("Logout from all devices", exc)

        logger.info(f"User {ctx.user_id} logged out from {count} session(s)")
        return FlowResult.ok(Messages.LOGGED_OUT_ALL)

    # ------------------------------------------------------------------
    # Session check
    # ------------------------------------------------------------------

    async def validate_token(self, ctx: RequestContext) -> FlowResult:
        """Profile of the session owner; a missing subject waits out the latency floor."""
        user = await self._current_user(ctx)
        if user is None:
            await self._equalize_latency()
            return FlowResult.unauthorized(Messages.USER_NOT_FOUND)

        roles = await self._identity.get_roles(user)
        return FlowResult.ok(
            Messages.TOKEN_VALID,
            {
                "id": user.id,
                "email": user.email,
                "first_name": user.first_name,
                "last_name": user.last_name,
                "email_verified": user.email_verified,
                "roles": roles,
            },
        )
