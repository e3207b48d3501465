"""Deletes finished auth token records."""

import asyncio
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from rental_auth.config import AuthTokenCleanupSettings
from rental_auth.services.repositories import UserTokenRepository
from rental_auth.services.shared.datetime_utils import utcnow
from rental_auth.workers.base import RetentionSweeper, SweepStats


class AuthTokenCleanupSweeper(RetentionSweeper):
    """Purges used or revoked auth tokens whose expiry is older than the retention window."""

    name = "auth-token-cleanup"
    options: AuthTokenCleanupSettings

    @property
    def interval(self) -> timedelta:
        return timedelta(hours=self.options.interval_hours)

    async def _delete_batch(self, session: AsyncSession) -> int:
        cutoff = utcnow() - timedelta(days=self.options.retention_days_after_expiry)
        repo = UserTokenRepository(session)
        token_ids = await repo.find_purgeable_auth_ids(cutoff, self.options.batch_size)
        await repo.delete_by_ids(token_ids)
        return len(token_ids)

    async def sweep(self, stop_event: asyncio.Event | None = None) -> SweepStats:
        deleted, batches = await self.drain(self._delete_batch, stop_event)
        return SweepStats(deleted=deleted, batches=batches)
