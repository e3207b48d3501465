"""Revokes stale password reset tokens and deletes old finished ones."""

import asyncio
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from rental_auth.config import ResetTokenCleanupSettings
from rental_auth.services.repositories import UserTokenRepository
from rental_auth.services.shared.datetime_utils import utcnow
from rental_auth.workers.base import RetentionSweeper, SweepStats


class PasswordResetTokenCleanupSweeper(RetentionSweeper):
    """Two-phase policy for reset tokens.

    Phase 1 revokes unrevoked tokens issued more than the validity window ago.
    Phase 2 deletes tokens older than the retention window that are revoked,
    used or expired.
    """

    name = "reset-token-cleanup"
    options: ResetTokenCleanupSettings

    @property
    def interval(self) -> timedelta:
        return timedelta(hours=self.options.interval_hours)

    async def _revoke_batch(self, session: AsyncSession) -> int:
        now = utcnow()
        repo = UserTokenRepository(session)
        token_ids = await repo.find_stale_reset_ids(
            now - timedelta(minutes=self.options.token_validity_minutes),
            self.options.batch_size,
        )
        await repo.revoke_by_ids(token_ids, now)
        return len(token_ids)

    async def _delete_batch(self, session: AsyncSession) -> int:
        now = utcnow()
        repo = UserTokenRepository(session)
        token_ids = await repo.find_purgeable_reset_ids(
            now - timedelta(days=self.options.retention_days_after_expiry),
            now,
            self.options.batch_size,
        )
        await repo.delete_by_ids(token_ids)
        return len(token_ids)

    async def sweep(self, stop_event: asyncio.Event | None = None) -> SweepStats:
        revoked, revoke_batches = await self.drain(self._revoke_batch, stop_event)
        if stop_event is not None and stop_event.is_set():
            return SweepStats(revoked=revoked, batches=revoke_batches)
        deleted, delete_batches = await self.drain(self._delete_batch, stop_event)
        return SweepStats(
            deleted=deleted, revoked=revoked, batches=revoke_batches + delete_batches
        )
