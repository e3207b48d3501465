"""Per-request identity context derived from headers, cookies and token claims."""

from dataclasses import dataclass, field

from starlette.requests import Request

from rental_auth.constants import ClaimNames, Cookies
from rental_auth.services.auth.auth_service import AuthService

DEFAULT_LANGUAGE = "en"
REFRESH_TOKEN_HEADER = "X-Refresh-Token"
MAX_USER_AGENT_LENGTH = 500


@dataclass(frozen=True)
class RequestContext:
    """Read-only identity facts about the inbound request; every field may be None."""

    user_id: str | None = None
    token_jti: str | None = None
    email: str | None = None
    raw_auth_token: str | None = None
    refresh_secret: str | None = None
    client_ip: str | None = None
    user_agent: str | None = None
    language: str = DEFAULT_LANGUAGE
    claims: dict = field(default_factory=dict)


def _bearer_token(request: Request) -> str | None:
    authorization = request.headers.get("Authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return request.cookies.get(Cookies.ACCESS_TOKEN) or None


def _client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    if request.client:
        return request.client.host
    return None


def _language(request: Request) -> str:
    accept_language = request.headers.get("Accept-Language", "")
    first = accept_language.split(",")[0].split(";")[0].strip().lower()
    return first or DEFAULT_LANGUAGE


def build_request_context(request: Request) -> RequestContext:
    """Assemble the context for ``request``. Never raises on missing or bad tokens."""
    raw_token = _bearer_token(request)
    claims = (AuthService.decode_session_token(raw_token) if raw_token else None) or {}
    refresh_secret = request.cookies.get(Cookies.REFRESH_TOKEN) or request.headers.get(
        REFRESH_TOKEN_HEADER
    )

    return RequestContext(
        user_id=claims.get("sub"),
        token_jti=claims.get("jti"),
        email=claims.get(ClaimNames.EMAIL),
        raw_auth_token=raw_token,
        refresh_secret=refresh_secret or None,
        client_ip=_client_ip(request),
        user_agent=request.headers.get("User-Agent", "")[:MAX_USER_AGENT_LENGTH] or None,
        language=_language(request),
        claims=claims,
    )
