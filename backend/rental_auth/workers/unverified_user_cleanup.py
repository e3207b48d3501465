"""Deletes accounts that never confirmed their email."""

import asyncio
import logging
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from rental_auth.config import UnverifiedUserCleanupSettings
from rental_auth.services.repositories import UserRepository
from rental_auth.services.shared.datetime_utils import utcnow
from rental_auth.workers.base import RetentionSweeper, SweepStats

logger = logging.getLogger(__name__)


class UnverifiedUserCleanupSweeper(RetentionSweeper):
    """Purges unverified users created before the retention window, with their codes and tokens."""

    name = "unverified-user-cleanup"
    options: UnverifiedUserCleanupSettings

    @property
    def interval(self) -> timedelta:
        return timedelta(hours=self.options.interval_hours)

    async def _delete_batch(self, session: AsyncSession) -> int:
        cutoff = utcnow() - timedelta(hours=self.options.unverified_retention_hours)
        repo = UserRepository(session)
        user_ids = await repo.find_unverified_ids_created_before(cutoff, self.options.batch_size)
        if user_ids:
            await repo.delete_with_dependents(user_ids)
            logger.debug(f"Deleted {len(user_ids)} unverified account(s)")
        return len(user_ids)

    async def sweep(self, stop_event: asyncio.Event | None = None) -> SweepStats:
        deleted, batches = await self.drain(self._delete_batch, stop_event)
        return SweepStats(deleted=deleted, batches=batches)
