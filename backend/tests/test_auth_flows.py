"""End-to-end tests for the auth flows over HTTP."""

import logging
from datetime import timedelta

from sqlalchemy import func, select, update

from rental_auth.constants import ClaimNames, Messages, OtpType
from rental_auth.models import OneTimeCode, User, UserRole
from rental_auth.services.auth.auth_service import AuthService
from rental_auth.services.shared.datetime_utils import utcnow
from rental_auth.services.shared.masking import obfuscate_email
from tests.conftest import DEFAULT_PASSWORD, bearer, create_user

EMAIL = "renter@example.com"
NEW_PASSWORD = "NewSecure456"


async def sign_up(client, mock_emails, email: str = EMAIL) -> tuple[str, str]:
    """Register and return (verification token, emailed code)."""
    response = await client.post(
        "/api/auth/sign-up", json={"email": email, "password": DEFAULT_PASSWORD}
    )
    assert response.status_code == 201, response.text
    code = mock_emails["confirm"].call_args.args[1]
    return response.json()["token"], code


async def sign_in(client, email: str = EMAIL, password: str = DEFAULT_PASSWORD) -> dict:
    response = await client.post("/api/auth/sign-in", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return response.json()


def wrong_code(code: str) -> str:
    return "100000" if code != "100000" else "100001"


async def backdate_otps(session_maker, otp_type: OtpType, delta: timedelta) -> None:
    async with session_maker() as db:
        await db.execute(
            update(OneTimeCode)
            .where(OneTimeCode.type == otp_type)
            .values(creation_time=utcnow() - delta)
        )
        await db.commit()


async def get_user(session_maker, email: str = EMAIL) -> User:
    async with session_maker() as db:
        result = await db.execute(select(User).where(User.email == email))
        return result.scalar_one()


class TestSignUp:
    """Tests for registration."""

    async def test_sign_up_returns_verification_token(self, auth_client, mock_emails):
        client, session_maker = auth_client

        token, code = await sign_up(client, mock_emails)

        claims = AuthService.decode_session_token(token)
        assert claims[ClaimNames.IS_VERIFICATION_TOKEN] == "true"
        assert mock_emails["confirm"].call_args.args[0] == EMAIL
        assert len(code) == 6 and code.isdigit()

        user = await get_user(session_maker)
        assert user.email_verified is False
        async with session_maker() as db:
            roles = (await db.execute(select(UserRole.role).where(UserRole.user_id == user.id))).scalars().all()
        assert roles == ["Customer"]

    async def test_sign_up_does_not_return_session_tokens(self, auth_client, mock_emails):
        client, _ = auth_client
        response = await client.post(
            "/api/auth/sign-up", json={"email": EMAIL, "password": DEFAULT_PASSWORD}
        )
        data = response.json()
        assert "access_token" not in data
        assert "refresh_token" not in data

    async def test_repeat_sign_up_for_unconfirmed_user(self, auth_client, mock_emails):
        """Re-registering an unconfirmed email replaces the code and token."""
        client, session_maker = auth_client
        first_token, _ = await sign_up(client, mock_emails)
        second_token, second_code = await sign_up(client, mock_emails)

        async with session_maker() as db:
            users = (await db.execute(select(func.count()).select_from(User))).scalar_one()
            active = (
                await db.execute(
                    select(func.count())
                    .select_from(OneTimeCode)
                    .where(OneTimeCode.is_used.is_(False))
                )
            ).scalar_one()
        assert users == 1
        assert active == 1

        stale = await client.post(
            "/api/auth/confirm-email", json={"code": second_code}, headers=bearer(first_token)
        )
        assert stale.status_code == 401

        fresh = await client.post(
            "/api/auth/confirm-email", json={"code": second_code}, headers=bearer(second_token)
        )
        assert fresh.status_code == 200

    async def test_sign_up_confirmed_email_rejected(self, auth_client, mock_emails):
        client, session_maker = auth_client
        await create_user(session_maker, EMAIL, verified=True)

        response = await client.post(
            "/api/auth/sign-up", json={"email": EMAIL, "password": DEFAULT_PASSWORD}
        )
        assert response.status_code == 400
        assert response.json()["detail"] == Messages.EMAIL_ALREADY_EXISTS
        mock_emails["confirm"].assert_not_called()

    async def test_sign_up_weak_password_rejected(self, auth_client, mock_emails):
        client, _ = auth_client
        response = await client.post(
            "/api/auth/sign-up", json={"email": EMAIL, "password": "alllowercase1"}
        )
        assert response.status_code == 422

    async def test_email_failure_does_not_fail_sign_up(self, auth_client, mock_emails):
        client, session_maker = auth_client
        mock_emails["confirm"].return_value = False

        response = await client.post(
            "/api/auth/sign-up", json={"email": EMAIL, "password": DEFAULT_PASSWORD}
        )
        assert response.status_code == 201
        assert (await get_user(session_maker)).email == EMAIL


class TestConfirmEmail:
    """Tests for email confirmation."""

    async def test_confirm_email_verifies_user(self, auth_client, mock_emails):
        client, session_maker = auth_client
        token, code = await sign_up(client, mock_emails)

        response = await client.post(
            "/api/auth/confirm-email", json={"code": code}, headers=bearer(token)
        )
        assert response.status_code == 200
        assert response.json()["message"] == Messages.EMAIL_CONFIRMED

        user = await get_user(session_maker)
        assert user.email_verified is True
        assert user.email_verified_at is not None
        mock_emails["welcome"].assert_called_once_with(EMAIL)

        reused = await client.post(
            "/api/auth/confirm-email", json={"code": code}, headers=bearer(token)
        )
        assert reused.status_code == 401

    async def test_wrong_code_counts_attempt(self, auth_client, mock_emails):
        client, session_maker = auth_client
        token, code = await sign_up(client, mock_emails)

        response = await client.post(
            "/api/auth/confirm-email", json={"code": wrong_code(code)}, headers=bearer(token)
        )
        assert response.status_code == 400
        assert response.json()["detail"] == Messages.INVALID_OR_EXPIRED_CODE

        async with session_maker() as db:
            otp = (await db.execute(select(OneTimeCode))).scalar_one()
        assert otp.attempts_count == 1

    async def test_lockout_after_five_wrong_codes(self, auth_client, mock_emails):
        """The fifth miss locks the code and revokes the verification token."""
        client, session_maker = auth_client
        token, code = await sign_up(client, mock_emails)

        for _ in range(5):
            response = await client.post(
                "/api/auth/confirm-email", json={"code": wrong_code(code)}, headers=bearer(token)
            )
            assert response.status_code == 400

        response = await client.post(
            "/api/auth/confirm-email", json={"code": code}, headers=bearer(token)
        )
        assert response.status_code == 401
        assert (await get_user(session_maker)).email_verified is False

    async def test_confirm_requires_verification_token(self, auth_client, mock_emails):
        client, session_maker = auth_client
        await create_user(session_maker, EMAIL, verified=True)
        session = await sign_in(client)

        response = await client.post(
            "/api/auth/confirm-email",
            json={"code": "123456"},
            headers=bearer(session["access_token"]),
        )
        assert response.status_code == 401

    async def test_confirm_without_token(self, auth_client, mock_emails):
        client, _ = auth_client
        response = await client.post("/api/auth/confirm-email", json={"code": "123456"})
        assert response.status_code == 401

    async def test_malformed_code_rejected(self, auth_client, mock_emails):
        client, _ = auth_client
        token, _ = await sign_up(client, mock_emails)
        response = await client.post(
            "/api/auth/confirm-email", json={"code": "12ab"}, headers=bearer(token)
        )
        assert response.status_code == 422


class TestResendVerificationCode:
    """Tests for resending the confirmation code."""

    async def test_resend_too_soon(self, auth_client, mock_emails):
        client, _ = auth_client
        token, _ = await sign_up(client, mock_emails)

        response = await client.post("/api/auth/resend-verification-code", headers=bearer(token))
        assert response.status_code == 400
        assert "seconds" in response.json()["detail"]

    async def test_resend_after_cooldown(self, auth_client, mock_emails):
        client, session_maker = auth_client
        old_token, old_code = await sign_up(client, mock_emails)
        await backdate_otps(session_maker, OtpType.CONFIRM_EMAIL, timedelta(minutes=2, seconds=1))

        response = await client.post(
            "/api/auth/resend-verification-code", headers=bearer(old_token)
        )
        assert response.status_code == 200
        new_token = response.json()["token"]
        new_code = mock_emails["confirm"].call_args.args[1]
        assert mock_emails["confirm"].call_count == 2

        stale = await client.post(
            "/api/auth/confirm-email", json={"code": new_code}, headers=bearer(old_token)
        )
        assert stale.status_code == 401

        if new_code != old_code:
            old = await client.post(
                "/api/auth/confirm-email", json={"code": old_code}, headers=bearer(new_token)
            )
            assert old.status_code == 400

        confirmed = await client.post(
            "/api/auth/confirm-email", json={"code": new_code}, headers=bearer(new_token)
        )
        assert confirmed.status_code == 200


class TestSignIn:
    """Tests for sign-in."""

    async def test_sign_in_returns_tokens_and_cookies(self, auth_client, mock_emails):
        client, session_maker = auth_client
        await create_user(session_maker, EMAIL)

        response = await client.post(
            "/api/auth/sign-in", json={"email": EMAIL, "password": DEFAULT_PASSWORD}
        )
        assert response.status_code == 200
        data = response.json()
        assert data["token_type"] == "bearer"
        assert data["access_token"]
        assert data["refresh_token"]
        assert "accessToken" in response.cookies
        assert "refreshToken" in response.cookies

    async def test_wrong_password_and_unknown_email_look_the_same(self, auth_client, mock_emails):
        client, session_maker = auth_client
        await create_user(session_maker, EMAIL)

        wrong = await client.post(
            "/api/auth/sign-in", json={"email": EMAIL, "password": "WrongPass1"}
        )
        unknown = await client.post(
            "/api/auth/sign-in", json={"email": "nobody@example.com", "password": "WrongPass1"}
        )
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json()["detail"] == unknown.json()["detail"] == Messages.INVALID_CREDENTIALS

    async def test_failed_sign_in_logs_masked_email(self, auth_client, mock_emails, caplog):
        client, _ = auth_client
        with caplog.at_level(logging.WARNING):
            await client.post(
                "/api/auth/sign-in", json={"email": EMAIL, "password": "WrongPass1"}
            )
        assert obfuscate_email(EMAIL) in caplog.text
        assert EMAIL not in caplog.text

    async def test_unverified_user_cannot_sign_in(self, auth_client, mock_emails):
        client, session_maker = auth_client
        await create_user(session_maker, EMAIL, verified=False)

        response = await client.post(
            "/api/auth/sign-in", json={"email": EMAIL, "password": DEFAULT_PASSWORD}
        )
        assert response.status_code == 403
        assert response.json()["detail"] == Messages.EMAIL_NOT_VERIFIED


class TestRefreshToken:
    """Tests for session rotation."""

    async def test_refresh_rotates_session(self, auth_client, mock_emails):
        client, session_maker = auth_client
        await create_user(session_maker, EMAIL)
        session = await sign_in(client)

        response = await client.post(
            "/api/auth/refresh-token",
            json={"email": EMAIL, "refresh_token": session["refresh_token"]},
            headers=bearer(session["access_token"]),
        )
        assert response.status_code == 200
        rotated = response.json()
        assert rotated["refresh_token"] != session["refresh_token"]

        old_session = await client.get(
            "/api/auth/validate-token", headers=bearer(session["access_token"])
        )
        assert old_session.status_code == 401

        new_session = await client.get(
            "/api/auth/validate-token", headers=bearer(rotated["access_token"])
        )
        assert new_session.status_code == 200

    async def test_refresh_secret_reuse_revokes_all_sessions(self, auth_client, mock_emails):
        """Replaying a rotated secret signs the user out everywhere."""
        client, session_maker = auth_client
        await create_user(session_maker, EMAIL)
        session = await sign_in(client)

        rotated = (
            await client.post(
                "/api/auth/refresh-token",
                json={"email": EMAIL, "refresh_token": session["refresh_token"]},
                headers=bearer(session["access_token"]),
            )
        ).json()

        replay = await client.post(
            "/api/auth/refresh-token",
            json={"email": EMAIL, "refresh_token": session["refresh_token"]},
            headers=bearer(session["access_token"]),
        )
        assert replay.status_code == 401
        assert replay.json()["detail"] == Messages.ACCESS_DENIED

        response = await client.get(
            "/api/auth/validate-token", headers=bearer(rotated["access_token"])
        )
        assert response.status_code == 401

    async def test_refresh_with_wrong_secret(self, auth_client, mock_emails):
        client, session_maker = auth_client
        await create_user(session_maker, EMAIL)
        session = await sign_in(client)

        response = await client.post(
            "/api/auth/refresh-token",
            json={"email": EMAIL, "refresh_token": "not-the-secret"},
            headers=bearer(session["access_token"]),
        )
        assert response.status_code == 401
        assert response.json()["detail"] == Messages.SESSION_EXPIRED

    async def test_refresh_without_secret(self, auth_client, mock_emails):
        client, session_maker = auth_client
        await create_user(session_maker, EMAIL)
        session = await sign_in(client)
        client.cookies.clear()

        response = await client.post(
            "/api/auth/refresh-token",
            json={"email": EMAIL},
            headers=bearer(session["access_token"]),
        )
        assert response.status_code == 401
        assert response.json()["detail"] == Messages.MISSING_TOKEN

    async def test_refresh_reads_cookie_secret(self, auth_client, mock_emails):
        client, session_maker = auth_client
        await create_user(session_maker, EMAIL)
        await sign_in(client)

        response = await client.post("/api/auth/refresh-token", json={"email": EMAIL})
        assert response.status_code == 200


class TestLogout:
    """Tests for logout and logout-all."""

    async def test_logout_revokes_current_session(self, auth_client, mock_emails):
        client, session_maker = auth_client
        await create_user(session_maker, EMAIL)
        session = await sign_in(client)

        response = await client.post("/api/auth/logout", headers=bearer(session["access_token"]))
        assert response.status_code == 200
        assert response.json()["message"] == Messages.LOGGED_OUT

        revoked = await client.get(
            "/api/auth/validate-token", headers=bearer(session["access_token"])
        )
        assert revoked.status_code == 401

    async def test_logout_twice_succeeds(self, auth_client, mock_emails):
        client, session_maker = auth_client
        await create_user(session_maker, EMAIL)
        session = await sign_in(client)

        first = await client.post("/api/auth/logout", headers=bearer(session["access_token"]))
        assert first.status_code == 200

        again = await client.post("/api/auth/logout", headers=bearer(session["access_token"]))
        assert again.status_code == 200
        assert again.json()["message"] == Messages.LOGGED_OUT

    async def test_logout_all(self, auth_client, mock_emails):
        client, session_maker = auth_client
        await create_user(session_maker, EMAIL)
        session = await sign_in(client)

        response = await client.post(
            "/api/auth/logout-all", headers=bearer(session["access_token"])
        )
        assert response.status_code == 200

        revoked = await client.get(
            "/api/auth/validate-token", headers=bearer(session["access_token"])
        )
        assert revoked.status_code == 401

        again = await client.post("/api/auth/logout", headers=bearer(session["access_token"]))
        assert again.status_code == 200

    async def test_logout_all_after_logout_succeeds(self, auth_client, mock_emails):
        client, session_maker = auth_client
        await create_user(session_maker, EMAIL)
        session = await sign_in(client)

        await client.post("/api/auth/logout", headers=bearer(session["access_token"]))
        response = await client.post(
            "/api/auth/logout-all", headers=bearer(session["access_token"])
        )
        assert response.status_code == 200

    async def test_logout_requires_session_token(self, auth_client, mock_emails):
        client, _ = auth_client
        token, _ = await sign_up(client, mock_emails)

        response = await client.post("/api/auth/logout", headers=bearer(token))
        assert response.status_code == 401

        anonymous = await client.post("/api/auth/logout")
        assert anonymous.status_code == 401


class TestValidateToken:
    """Tests for the session check endpoint."""

    async def test_valid_session_returns_profile(self, auth_client, mock_emails):
        client, session_maker = auth_client
        user = await create_user(session_maker, EMAIL)
        session = await sign_in(client)

        response = await client.get(
            "/api/auth/validate-token", headers=bearer(session["access_token"])
        )
        assert response.status_code == 200
        data = response.json()
        assert data["message"] == Messages.TOKEN_VALID
        assert data["id"] == user.id
        assert data["email"] == EMAIL
        assert data["email_verified"] is True
        assert "password_hash" not in data

    async def test_signed_up_user_has_customer_role(self, auth_client, mock_emails):
        client, _ = auth_client
        token, code = await sign_up(client, mock_emails)
        confirmed = await client.post(
            "/api/auth/confirm-email", json={"code": code}, headers=bearer(token)
        )
        assert confirmed.status_code == 200
        session = await sign_in(client)

        response = await client.get(
            "/api/auth/validate-token", headers=bearer(session["access_token"])
        )
        assert response.status_code == 200
        assert response.json()["roles"] == ["Customer"]

    async def test_revoked_session_rejected(self, auth_client, mock_emails):
        client, session_maker = auth_client
        await create_user(session_maker, EMAIL)
        session = await sign_in(client)
        await client.post("/api/auth/logout", headers=bearer(session["access_token"]))

        response = await client.get(
            "/api/auth/validate-token", headers=bearer(session["access_token"])
        )
        assert response.status_code == 401

    async def test_verification_token_rejected(self, auth_client, mock_emails):
        client, _ = auth_client
        token, _ = await sign_up(client, mock_emails)

        response = await client.get("/api/auth/validate-token", headers=bearer(token))
        assert response.status_code == 401

        anonymous = await client.get("/api/auth/validate-token")
        assert anonymous.status_code == 401


class TestPasswordReset:
    """Tests for the three-stage password reset."""

    async def _start_reset(self, client, mock_emails) -> tuple[str, str]:
        response = await client.post("/api/auth/send-reset-code", json={"email": EMAIL})
        assert response.status_code == 200
        return response.json()["token"], mock_emails["reset"].call_args.args[1]

    async def test_full_reset_flow(self, auth_client, mock_emails):
        client, session_maker = auth_client
        await create_user(session_maker, EMAIL)
        session = await sign_in(client)

        stage_one, code = await self._start_reset(client, mock_emails)
        claims = AuthService.decode_session_token(stage_one)
        assert claims[ClaimNames.RESET_TOKEN_STAGE] == "AwaitingVerification"

        verified = await client.post(
            "/api/auth/verify-reset-code", json={"code": code}, headers=bearer(stage_one)
        )
        assert verified.status_code == 200
        stage_two = verified.json()["token"]
        assert (
            AuthService.decode_session_token(stage_two)[ClaimNames.RESET_TOKEN_STAGE] == "Verified"
        )

        reset = await client.post(
            "/api/auth/reset-password",
            json={"new_password": NEW_PASSWORD},
            headers=bearer(stage_two),
        )
        assert reset.status_code == 200
        mock_emails["password_changed"].assert_called_once_with(EMAIL)

        old_session = await client.get(
            "/api/auth/validate-token", headers=bearer(session["access_token"])
        )
        assert old_session.status_code == 401

        old_refresh = await client.post(
            "/api/auth/refresh-token",
            json={"email": EMAIL, "refresh_token": session["refresh_token"]},
            headers=bearer(session["access_token"]),
        )
        assert old_refresh.status_code == 401

        replay = await client.post(
            "/api/auth/reset-password",
            json={"new_password": "Another789X"},
            headers=bearer(stage_two),
        )
        assert replay.status_code == 401

        old_password = await client.post(
            "/api/auth/sign-in", json={"email": EMAIL, "password": DEFAULT_PASSWORD}
        )
        assert old_password.status_code == 401
        await sign_in(client, password=NEW_PASSWORD)

    async def test_stage_one_token_cannot_reset_password(self, auth_client, mock_emails):
        client, session_maker = auth_client
        await create_user(session_maker, EMAIL)
        stage_one, _ = await self._start_reset(client, mock_emails)

        response = await client.post(
            "/api/auth/reset-password",
            json={"new_password": NEW_PASSWORD},
            headers=bearer(stage_one),
        )
        assert response.status_code == 401

    async def test_stage_two_token_cannot_verify_again(self, auth_client, mock_emails):
        client, session_maker = auth_client
        await create_user(session_maker, EMAIL)
        stage_one, code = await self._start_reset(client, mock_emails)
        stage_two = (
            await client.post(
                "/api/auth/verify-reset-code", json={"code": code}, headers=bearer(stage_one)
            )
        ).json()["token"]

        response = await client.post(
            "/api/auth/verify-reset-code", json={"code": code}, headers=bearer(stage_two)
        )
        assert response.status_code == 401

        reused = await client.post(
            "/api/auth/verify-reset-code", json={"code": code}, headers=bearer(stage_one)
        )
        assert reused.status_code == 401

    async def test_unknown_email_gets_generic_success(self, auth_client, mock_emails):
        client, _ = auth_client
        response = await client.post(
            "/api/auth/send-reset-code", json={"email": "nobody@example.com"}
        )
        assert response.status_code == 200
        assert response.json()["message"] == Messages.RESET_CODE_SENT
        assert response.json()["token"] == ""
        mock_emails["reset"].assert_not_called()

    async def test_wrong_reset_code(self, auth_client, mock_emails):
        client, session_maker = auth_client
        await create_user(session_maker, EMAIL)
        stage_one, code = await self._start_reset(client, mock_emails)

        response = await client.post(
            "/api/auth/verify-reset-code", json={"code": wrong_code(code)}, headers=bearer(stage_one)
        )
        assert response.status_code == 400
        assert response.json()["detail"] == Messages.INVALID_OR_EXPIRED_CODE

    async def test_email_failure_hides_reset_token(self, auth_client, mock_emails):
        client, session_maker = auth_client
        await create_user(session_maker, EMAIL)
        mock_emails["reset"].return_value = False

        response = await client.post("/api/auth/send-reset-code", json={"email": EMAIL})
        assert response.status_code == 200
        assert response.json()["token"] == ""

    async def test_resend_reset_code(self, auth_client, mock_emails):
        client, session_maker = auth_client
        await create_user(session_maker, EMAIL)
        stage_one, _ = await self._start_reset(client, mock_emails)

        too_soon = await client.post("/api/auth/resend-reset-code", headers=bearer(stage_one))
        assert too_soon.status_code == 400

        await backdate_otps(session_maker, OtpType.RESET_PASSWORD, timedelta(seconds=61))
        response = await client.post("/api/auth/resend-reset-code", headers=bearer(stage_one))
        assert response.status_code == 200
        new_stage_one = response.json()["token"]
        new_code = mock_emails["reset"].call_args.args[1]

        stale = await client.post(
            "/api/auth/verify-reset-code", json={"code": new_code}, headers=bearer(stage_one)
        )
        assert stale.status_code == 401

        verified = await client.post(
            "/api/auth/verify-reset-code", json={"code": new_code}, headers=bearer(new_stage_one)
        )
        assert verified.status_code == 200

    async def test_new_reset_request_invalidates_previous(self, auth_client, mock_emails):
        client, session_maker = auth_client
        await create_user(session_maker, EMAIL)
        first_token, first_code = await self._start_reset(client, mock_emails)
        await self._start_reset(client, mock_emails)

        response = await client.post(
            "/api/auth/verify-reset-code", json={"code": first_code}, headers=bearer(first_token)
        )
        assert response.status_code == 401


async def test_health_check(auth_client):
    client, _ = auth_client
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}
