"""Repository-specific exceptions.

These exceptions provide semantic meaning for data access errors,
separating them from general database errors.
"""

from sqlalchemy.exc import IntegrityError

# Driver messages / SQLSTATE codes that signal a unique constraint violation
_UNIQUE_VIOLATION_MARKERS = ("unique constraint", "duplicate key", "23505")


class RepositoryError(Exception):
    """Base exception for repository operations."""


class NotFoundError(RepositoryError):
    """Entity not found in database."""

    def __init__(self, entity_type: str, identifier: str | int):
        self.entity_type = entity_type
        self.identifier = identifier
        super().__init__(f"{entity_type} not found: {identifier}")


class DuplicateError(RepositoryError):
    """Entity already exists (unique constraint violation)."""

    def __init__(self, entity_type: str, field: str, value: str):
        self.entity_type = entity_type
        self.field = field
        self.value = value
        super().__init__(f"{entity_type} with {field}={value} already exists")


def is_unique_violation(exc: BaseException) -> bool:
    """Return True when ``exc`` is an IntegrityError raised by a unique index."""
    if not isinstance(exc, IntegrityError):
        return False
    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate == "23505":
        return True
    message = str(orig).lower()
    return any(marker in message for marker in _UNIQUE_VIOLATION_MARKERS)
