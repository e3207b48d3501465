"""Result envelope returned by every auth flow."""

from dataclasses import dataclass, field
from typing import Any

from fastapi import status

from rental_auth.constants import Messages


@dataclass(frozen=True)
class FlowResult:
    """Status code, outcome and payload of an auth flow.

    Flows never raise for business outcomes; the router maps failures to
    HTTP errors.
    """

    status_code: int
    succeeded: bool
    message: str | None = None
    data: dict[str, Any] | None = None
    errors: list[str] = field(default_factory=list)

    @classmethod
    def ok(cls, message: str, data: dict[str, Any] | None = None) -> "FlowResult":
        return cls(status.HTTP_200_OK, True, message, data)

    @classmethod
    def created(cls, message: str, data: dict[str, Any] | None = None) -> "FlowResult":
        return cls(status.HTTP_201_CREATED, True, message, data)

    @classmethod
    def bad_request(cls, message: str, errors: list[str] | None = None) -> "FlowResult":
        return cls(status.HTTP_400_BAD_REQUEST, False, message, errors=errors or [])

    @classmethod
    def unauthorized(cls, message: str = Messages.INVALID_TOKEN) -> "FlowResult":
        return cls(status.HTTP_401_UNAUTHORIZED, False, message)

    @classmethod
    def forbidden(cls, message: str) -> "FlowResult":
        return cls(status.HTTP_403_FORBIDDEN, False, message)

    @classmethod
    def internal_error(cls) -> "FlowResult":
        return cls(status.HTTP_500_INTERNAL_SERVER_ERROR, False, Messages.INTERNAL_ERROR)
