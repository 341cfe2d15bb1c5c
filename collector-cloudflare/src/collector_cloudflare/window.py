"""Query time window for one scrape cycle."""

from datetime import datetime, timedelta, timezone

from analytics_core.schemas import TimeWindow


WINDOW = timedelta(seconds=60)


def floor_to_minute(ts: datetime) -> datetime:
    return ts.replace(second=0, microsecond=0)


def compute_time_window(now: datetime, scrape_delay_seconds: int) -> TimeWindow:
    """Return the one-minute window ending ``scrape_delay_seconds`` before ``now``.

    The end is always rounded down so the window never reaches into data the
    provider may still be aggregating. Naive datetimes are taken as UTC.
    """
    if scrape_delay_seconds < 0:
        raise ValueError(f"scrape delay must be >= 0, got {scrape_delay_seconds}")

    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    else:
        now = now.astimezone(timezone.utc)

    end = floor_to_minute(now - timedelta(seconds=scrape_delay_seconds))
    return TimeWindow(start=end - WINDOW, end=end)


def format_rfc3339(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
