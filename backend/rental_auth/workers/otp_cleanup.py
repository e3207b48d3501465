"""Deletes one-time codes that are past their retention window."""

import asyncio
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from rental_auth.config import OtpCleanupSettings
from rental_auth.services.repositories import OtpRepository
from rental_auth.services.shared.datetime_utils import utcnow
from rental_auth.workers.base import RetentionSweeper, SweepStats


class OtpCleanupSweeper(RetentionSweeper):
    """Purges codes that are used, expired, or simply too old.

    A code matches when any of these holds:
    - used and created before ``now - retention``
    - expired before ``now - retention``
    - created before ``now - max_age`` (whatever its state)
    """

    name = "otp-cleanup"
    options: OtpCleanupSettings

    @property
    def interval(self) -> timedelta:
        return timedelta(minutes=self.options.interval_minutes)

    async def _delete_batch(self, session: AsyncSession) -> int:
        now = utcnow()
        repo = OtpRepository(session)
        otp_ids = await repo.find_purgeable_ids(
            used_or_expired_before=now - timedelta(hours=self.options.retention_hours_after_expiry),
            created_before=now - timedelta(hours=self.options.max_age_hours),
            limit=self.options.batch_size,
        )
        await repo.delete_by_ids(otp_ids)
        return len(otp_ids)

    async def sweep(self, stop_event: asyncio.Event | None = None) -> SweepStats:
        deleted, batches = await self.drain(self._delete_batch, stop_event)
        return SweepStats(deleted=deleted, batches=batches)
