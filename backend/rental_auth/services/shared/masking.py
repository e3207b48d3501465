"""Helpers for keeping personal data out of logs."""

_MALFORMED_EMAIL = "****@****"


def _mask_part(part: str) -> str:
    if len(part) <= 2:
        return "***"
    return part[:2] + "*" * (len(part) - 2)


def obfuscate_email(email: str | None) -> str:
    """Mask an email address for logging, e.g. ``jo******@ex*********``."""
    if not email or email.count("@") != 1:
        return _MALFORMED_EMAIL
    local, domain = email.split("@")
    if not local or not domain:
        return _MALFORMED_EMAIL
    return f"{_mask_part(local)}@{_mask_part(domain)}"
