"""Authentication dependencies for protected routes."""

from collections.abc import Awaitable, Callable

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from rental_auth.constants import Messages
from rental_auth.database import get_db
from rental_auth.services.auth.orchestrator import AuthOrchestrator
from rental_auth.services.auth.policies import TokenPolicy, authorize
from rental_auth.services.auth.request_context import RequestContext, build_request_context
from rental_auth.services.auth.token_store import TokenStore


async def get_request_context(request: Request) -> RequestContext:
    """Identity context for the current request; never raises."""
    return build_request_context(request)


async def get_auth_orchestrator(db: AsyncSession = Depends(get_db)) -> AuthOrchestrator:
    return AuthOrchestrator(db)


def require_policy(policy: TokenPolicy) -> Callable[..., Awaitable[RequestContext]]:
    """
    Build a dependency that rejects requests whose token does not satisfy ``policy``.

    Usage:
        @router.post("/logout")
        async def logout(ctx: RequestContext = Depends(require_valid_token)):
            ...
    """

    async def dependency(
        ctx: RequestContext = Depends(get_request_context),
        db: AsyncSession = Depends(get_db),
    ) -> RequestContext:
        if not await authorize(policy, ctx.claims, TokenStore(db)):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail=Messages.INVALID_TOKEN,
                headers={"WWW-Authenticate": "Bearer"},
            )
        return ctx

    return dependency


require_valid_token = require_policy(TokenPolicy.VALID_TOKEN)
require_verification_token = require_policy(TokenPolicy.VERIFICATION_ONLY)
require_awaiting_reset_verification = require_policy(TokenPolicy.AWAIT_VERIFICATION)
require_verified_reset = require_policy(TokenPolicy.RESET_PASSWORD_VERIFIED)
require_logout_token = require_policy(TokenPolicy.LOGOUT)
