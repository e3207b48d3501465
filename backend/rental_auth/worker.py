"""Background worker running the retention sweepers.

Usage:
    python -m rental_auth.worker [--create-tables]
"""

import argparse
import asyncio
import logging
import signal

from rental_auth.config import (
    AuthTokenCleanupSettings,
    OtpCleanupSettings,
    ResetTokenCleanupSettings,
    UnverifiedUserCleanupSettings,
    settings,
)
from rental_auth.database import SessionLocal, engine
from rental_auth.init_db import create_tables
from rental_auth.workers import (
    AuthTokenCleanupSweeper,
    OtpCleanupSweeper,
    PasswordResetTokenCleanupSweeper,
    RetentionSweeper,
    UnverifiedUserCleanupSweeper,
)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)


def build_sweepers(session_factory=SessionLocal) -> list[RetentionSweeper]:
    """Instantiate every sweeper with options loaded (and validated) from the environment."""
    return [
        OtpCleanupSweeper(session_factory, OtpCleanupSettings()),
        AuthTokenCleanupSweeper(session_factory, AuthTokenCleanupSettings()),
        PasswordResetTokenCleanupSweeper(session_factory, ResetTokenCleanupSettings()),
        UnverifiedUserCleanupSweeper(session_factory, UnverifiedUserCleanupSettings()),
    ]


async def run_sweepers(sweepers: list[RetentionSweeper], stop_event: asyncio.Event) -> None:
    """Run the sweepers concurrently until ``stop_event`` is set."""
    tasks = [
        asyncio.create_task(sweeper.run(stop_event), name=sweeper.name)
        for sweeper in sweepers
        if sweeper.options.enabled
    ]
    if not tasks:
        logger.warning("All sweepers are disabled, nothing to run")
        return

    logger.info(f"Started {len(tasks)} sweeper(s)")
    results = await asyncio.gather(*tasks, return_exceptions=True)
    for task, result in zip(tasks, results):
        if isinstance(result, Exception):
            logger.error(f"Sweeper {task.get_name()} exited with an error: {result}")


async def main(create_schema: bool = False) -> None:
    if create_schema:
        await create_tables()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await run_sweepers(build_sweepers(), stop_event)
    finally:
        await engine.dispose()
        logger.info("Worker shut down")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the retention sweepers")
    parser.add_argument(
        "--create-tables", action="store_true", help="Create database tables before starting"
    )
    args = parser.parse_args()
    asyncio.run(main(create_schema=args.create_tables))
