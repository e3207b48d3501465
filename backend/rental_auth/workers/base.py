"""Base class for the batch retention sweepers."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rental_auth.config import SweeperSettings
from rental_auth.workers.scheduling import next_run_delay

logger = logging.getLogger(__name__)

BatchStep = Callable[[AsyncSession], Awaitable[int]]


@dataclass
class SweepStats:
    """Counts from one sweep."""

    deleted: int = 0
    revoked: int = 0
    batches: int = 0


class RetentionSweeper(ABC):
    """Runs a retention policy on a schedule, draining matches in batches.

    Each batch commits in its own session, so an interrupted sweep keeps the
    work already done. The loop only ends when the stop event is set or the
    task is cancelled.
    """

    name = "retention-sweeper"

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        options: SweeperSettings,
    ) -> None:
        self._session_factory = session_factory
        self.options = options

    @property
    @abstractmethod
    def interval(self) -> timedelta:
        """Delay between runs when no ``run_at`` is configured."""

    @abstractmethod
    async def sweep(self, stop_event: asyncio.Event | None = None) -> SweepStats:
        """Apply the retention policy once."""

    async def run(self, stop_event: asyncio.Event) -> None:
        """Scheduling loop; returns when ``stop_event`` is set."""
        if not self.options.enabled:
            logger.info(f"{self.name} is disabled")
            return

        logger.info(f"{self.name} started (interval={self.interval}, run_at={self.options.run_at})")
        delay = next_run_delay(self.options.run_at, self.interval)
        while not stop_event.is_set():
            if await self._wait(stop_event, delay):
                break
            try:
                await self.run_once(stop_event)
                delay = next_run_delay(self.options.run_at, self.interval)
            except Exception:
                delay = timedelta(seconds=self.options.error_backoff_seconds)
                logger.exception(f"{self.name} failed, retrying in {delay}")
        logger.info(f"{self.name} stopped")

    async def run_once(self, stop_event: asyncio.Event | None = None) -> SweepStats:
        """Run a single sweep and log its duration and counts."""
        started = time.monotonic()
        stats = await self.sweep(stop_event)
        elapsed = time.monotonic() - started

        logger.info(
            f"{self.name} complete: {stats.deleted} deleted, {stats.revoked} revoked "
            f"in {stats.batches} batch(es), {elapsed:.2f}s"
        )
        if elapsed > self.options.long_run_warning_seconds:
            logger.warning(f"{self.name} took {elapsed:.0f}s, consider a larger batch size")
        return stats

    async def drain(self, step: BatchStep, stop_event: asyncio.Event | None = None) -> tuple[int, int]:
        """Run ``step`` in fresh sessions until a batch comes back short.

        ``step`` returns the number of rows it matched. Returns the total
        matched and the number of batches.
        """
        total = 0
        batches = 0
        while True:
            async with self._session_factory() as session:
                matched = await step(session)
                await session.commit()
            total += matched
            batches += 1

            if matched < self.options.batch_size:
                break
            if stop_event is not None and stop_event.is_set():
                logger.info(f"{self.name} interrupted after {batches} batch(es)")
                break
            await asyncio.sleep(self.options.inter_batch_delay_ms / 1000)
        return total, batches

    @staticmethod
    async def _wait(stop_event: asyncio.Event, delay: timedelta) -> bool:
        """Sleep for ``delay``; returns True if the stop event fired first."""
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=max(delay.total_seconds(), 0))
            return True
        except TimeoutError:
            return stop_event.is_set()
