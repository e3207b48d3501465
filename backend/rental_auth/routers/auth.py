"""Authentication router.

Thin HTTP layer: parses requests, applies the token policies and translates
FlowResults into responses.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from rental_auth.config import settings
from rental_auth.constants import Cookies
from rental_auth.dependencies.auth import (
    get_auth_orchestrator,
    get_request_context,
    require_awaiting_reset_verification,
    require_logout_token,
    require_valid_token,
    require_verification_token,
    require_verified_reset,
)
from rental_auth.rate_limiter import limiter
from rental_auth.schemas.auth import (
    CodeRequest,
    FlowTokenResponse,
    MessageResponse,
    RefreshTokenRequest,
    ResetPasswordRequest,
    SendResetCodeRequest,
    SignInRequest,
    SignUpRequest,
    TokenResponse,
    UserProfileResponse,
)
from rental_auth.services.auth.orchestrator import AuthOrchestrator
from rental_auth.services.auth.request_context import RequestContext
from rental_auth.services.auth.results import FlowResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])


def _unwrap(result: FlowResult) -> dict:
    """Return the flow payload, or raise the matching HTTP error."""
    if not result.succeeded:
        detail = result.message if not result.errors else {
            "message": result.message,
            "errors": result.errors,
        }
        headers = (
            {"WWW-Authenticate": "Bearer"}
            if result.status_code == status.HTTP_401_UNAUTHORIZED
            else None
        )
        raise HTTPException(status_code=result.status_code, detail=detail, headers=headers)
    return {"message": result.message, **(result.data or {})}


def _set_session_cookies(response: Response, payload: dict) -> None:
    """Mirror the session tokens into HttpOnly cookies."""
    cookie_options = {
        "httponly": True,
        "secure": not settings.debug,
        "samesite": "lax",
    }
    response.set_cookie(
        Cookies.ACCESS_TOKEN,
        payload["access_token"],
        max_age=settings.access_token_expire_minutes * 60,
        **cookie_options,
    )
    response.set_cookie(
        Cookies.REFRESH_TOKEN,
        payload["refresh_token"],
        max_age=settings.refresh_token_expire_days * 24 * 3600,
        **cookie_options,
    )


@router.post("/sign-up", response_model=FlowTokenResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("5/minute")
async def sign_up(
    request: Request,
    data: SignUpRequest,
    orchestrator: AuthOrchestrator = Depends(get_auth_orchestrator),
) -> dict:
    """Register a new user and email a confirmation code."""
    return _unwrap(await orchestrator.sign_up(data))


@router.post("/sign-in", response_model=TokenResponse)
@limiter.limit("5/minute")
async def sign_in(
    request: Request,
    response: Response,
    data: SignInRequest,
    orchestrator: AuthOrchestrator = Depends(get_auth_orchestrator),
) -> dict:
    """Sign in and get access/refresh tokens."""
    payload = _unwrap(await orchestrator.sign_in(data))
    _set_session_cookies(response, payload)
    return payload


@router.post("/refresh-token", response_model=TokenResponse)
@limiter.limit("10/minute")
async def refresh_token(
    request: Request,
    response: Response,
    data: RefreshTokenRequest,
    ctx: RequestContext = Depends(get_request_context),
    orchestrator: AuthOrchestrator = Depends(get_auth_orchestrator),
) -> dict:
    """Rotate the session using the refresh secret (body or cookie)."""
    payload = _unwrap(await orchestrator.refresh_token(ctx, data.email, data.refresh_token))
    _set_session_cookies(response, payload)
    return payload


@router.post("/confirm-email", response_model=MessageResponse)
async def confirm_email(
    data: CodeRequest,
    ctx: RequestContext = Depends(require_verification_token),
    orchestrator: AuthOrchestrator = Depends(get_auth_orchestrator),
) -> dict:
    """Confirm the email address with the emailed code."""
    return _unwrap(await orchestrator.confirm_email(ctx, data.code))


@router.post("/resend-verification-code", response_model=FlowTokenResponse)
@limiter.limit("3/minute")
async def resend_verification_code(
    request: Request,
    ctx: RequestContext = Depends(require_verification_token),
    orchestrator: AuthOrchestrator = Depends(get_auth_orchestrator),
) -> dict:
    """Send a new confirmation code and verification token."""
    return _unwrap(await orchestrator.resend_verification_code(ctx))


@router.post("/send-reset-code", response_model=FlowTokenResponse)
@limiter.limit("3/minute")
async def send_reset_code(
    request: Request,
    data: SendResetCodeRequest,
    orchestrator: AuthOrchestrator = Depends(get_auth_orchestrator),
) -> dict:
    """Start a password reset. Always succeeds to prevent email enumeration."""
    return _unwrap(await orchestrator.send_reset_code(data.email))


@router.post("/verify-reset-code", response_model=FlowTokenResponse)
async def verify_reset_code(
    data: CodeRequest,
    ctx: RequestContext = Depends(require_awaiting_reset_verification),
    orchestrator: AuthOrchestrator = Depends(get_auth_orchestrator),
) -> dict:
    """Verify the reset code and receive the verified-stage token."""
    return _unwrap(await orchestrator.verify_reset_code(ctx, data.code))


@router.post("/resend-reset-code", response_model=FlowTokenResponse)
@limiter.limit("3/minute")
async def resend_reset_code(
    request: Request,
    ctx: RequestContext = Depends(require_awaiting_reset_verification),
    orchestrator: AuthOrchestrator = Depends(get_auth_orchestrator),
) -> dict:
    """Send a new reset code with a fresh reset token."""
    return _unwrap(await orchestrator.resend_reset_code(ctx))


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    data: ResetPasswordRequest,
    ctx: RequestContext = Depends(require_verified_reset),
    orchestrator: AuthOrchestrator = Depends(get_auth_orchestrator),
) -> dict:
    """Set a new password; every session of the user is signed out."""
    return _unwrap(await orchestrator.reset_password(ctx, data.new_password))


@router.post("/logout", response_model=MessageResponse)
async def logout(
    response: Response,
    ctx: RequestContext = Depends(require_logout_token),
    orchestrator: AuthOrchestrator = Depends(get_auth_orchestrator),
) -> dict:
    """Logout the current session. Logging out a revoked session still succeeds."""
    payload = _unwrap(await orchestrator.logout(ctx))
    response.delete_cookie(Cookies.ACCESS_TOKEN)
    response.delete_cookie(Cookies.REFRESH_TOKEN)
    return payload


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(
    response: Response,
    ctx: RequestContext = Depends(require_logout_token),
    orchestrator: AuthOrchestrator = Depends(get_auth_orchestrator),
) -> dict:
    """Logout every session of the current user."""
    payload = _unwrap(await orchestrator.logout_all(ctx))
    response.delete_cookie(Cookies.ACCESS_TOKEN)
    response.delete_cookie(Cookies.REFRESH_TOKEN)
    return payload


@router.get("/validate-token", response_model=UserProfileResponse)
async def validate_token(
    ctx: RequestContext = Depends(require_valid_token),
    orchestrator: AuthOrchestrator = Depends(get_auth_orchestrator),
) -> dict:
    """Check the current session and return its owner."""
    return _unwrap(await orchestrator.validate_token(ctx))
