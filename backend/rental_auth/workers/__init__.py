"""Background retention sweepers.

Each sweeper runs on its own timer, drains matching rows in batches and
commits per batch:
- OtpCleanupSweeper: used, expired and over-age one-time codes
- AuthTokenCleanupSweeper: finished auth token records
- PasswordResetTokenCleanupSweeper: stale and finished reset tokens
- UnverifiedUserCleanupSweeper: accounts that never confirmed their email
"""

from .auth_token_cleanup import AuthTokenCleanupSweeper
from .base import RetentionSweeper, SweepStats
from .otp_cleanup import OtpCleanupSweeper
from .reset_token_cleanup import PasswordResetTokenCleanupSweeper
from .scheduling import next_run_delay, parse_run_at
from .unverified_user_cleanup import UnverifiedUserCleanupSweeper

__all__ = [
    "AuthTokenCleanupSweeper",
    "OtpCleanupSweeper",
    "PasswordResetTokenCleanupSweeper",
    "RetentionSweeper",
    "SweepStats",
    "UnverifiedUserCleanupSweeper",
    "next_run_delay",
    "parse_run_at",
]
