"""Schedule helpers for the retention sweepers."""

from datetime import datetime, time, timedelta

from rental_auth.services.shared.datetime_utils import as_utc, utcnow


def parse_run_at(run_at: str | None) -> time | None:
    """Parse an "HH:MM" UTC time of day; None or blank means "use the interval"."""
    if run_at is None or not run_at.strip():
        return None
    hours, _, minutes = run_at.strip().partition(":")
    return time(hour=int(hours), minute=int(minutes))


def next_run_delay(
    run_at: str | None, interval: timedelta, now: datetime | None = None
) -> timedelta:
    """Delay until the next run.

    With ``run_at`` set, the next occurrence of that UTC time of day (today if
    still ahead, otherwise tomorrow); without it, the fixed interval.
    """
    scheduled = parse_run_at(run_at)
    if scheduled is None:
        return interval

    now = as_utc(now) if now else utcnow()
    candidate = now.replace(
        hour=scheduled.hour, minute=scheduled.minute, second=0, microsecond=0
    )
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate - now
