"""Shared utilities for the services layer.

- Time helpers that keep every comparison in UTC
- Masking helpers for log-safe identifiers
"""

from .datetime_utils import as_utc, utcnow
from .masking import obfuscate_email

__all__ = [
    "as_utc",
    "obfuscate_email",
    "utcnow",
]
