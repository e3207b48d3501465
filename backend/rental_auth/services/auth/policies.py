"""Authorization policies over decoded session-token claims."""

from enum import StrEnum

from rental_auth.constants import ClaimNames, ResetPasswordStage
from rental_auth.services.auth.token_store import TokenStore


class TokenPolicy(StrEnum):
    VALID_TOKEN = "valid_token"
    VERIFICATION_ONLY = "verification_only"
    AWAIT_VERIFICATION = "await_verification"
    RESET_PASSWORD_VERIFIED = "reset_password_verified"
    LOGOUT = "logout"


# Satisfied by claim shape alone; revoked sessions may still log out.
_SHAPE_ONLY_POLICIES = {TokenPolicy.LOGOUT}


def _flag(claims: dict, name: str) -> bool:
    return str(claims.get(name, "")).lower() == "true"


def claims_satisfy(policy: TokenPolicy, claims: dict | None) -> bool:
    """Check the claim shape a policy requires, without touching the store."""
    if not claims or not claims.get("sub") or not claims.get("jti"):
        return False

    is_verification = _flag(claims, ClaimNames.IS_VERIFICATION_TOKEN)
    is_reset = _flag(claims, ClaimNames.IS_RESET_TOKEN)
    stage = claims.get(ClaimNames.RESET_TOKEN_STAGE)

    if policy in (TokenPolicy.VALID_TOKEN, TokenPolicy.LOGOUT):
        return not is_verification and not is_reset
    if policy == TokenPolicy.VERIFICATION_ONLY:
        return is_verification and not is_reset
    if policy == TokenPolicy.AWAIT_VERIFICATION:
        return is_reset and stage == ResetPasswordStage.AWAITING_VERIFICATION
    if policy == TokenPolicy.RESET_PASSWORD_VERIFIED:
        return is_reset and stage == ResetPasswordStage.VERIFIED
    return False


async def authorize(policy: TokenPolicy, claims: dict | None, token_store: TokenStore) -> bool:
    """Claim shape check followed by a fresh store lookup of the jti."""
    if not claims_satisfy(policy, claims):
        return False
    if policy in _SHAPE_ONLY_POLICIES:
        return True
    return await token_store.is_valid_by_jti(claims["jti"])
