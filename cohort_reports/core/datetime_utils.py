"""Centralized time helpers for report windows and display.

The host platform stores enrolment and completion times as integer unix
seconds, so report math is done on ints. The digest log uses naive UTC
datetimes for database compatibility.

Usage:
    from cohort_reports.core.datetime_utils import unix_now, recent_cutoff, days_since

    now = unix_now()
    since_ts = recent_cutoff(since_days=30, now=now)
    age = days_since(row.enroll_ts, now)
"""

from datetime import UTC, datetime
from zoneinfo import ZoneInfo

SECONDS_PER_DAY = 86400
# Leap years are averaged in rather than doing calendar arithmetic
DAYS_PER_YEAR = 365.25


def utc_now() -> datetime:
    """Get current UTC time as naive datetime.

    Returns naive datetime for database compatibility.
    """
    return datetime.now(UTC).replace(tzinfo=None)


def unix_now() -> int:
    """Current time as whole unix seconds."""
    return int(datetime.now(UTC).timestamp())


def recent_cutoff(since_days: int, now: int) -> int:
    """Unix timestamp `since_days` whole days before `now`."""
    return now - since_days * SECONDS_PER_DAY


def year_cutoff(years_back: int, now: int) -> int:
    """Unix timestamp roughly `years_back` years before `now`.

    Args:
        years_back: Lookback window in years
        now: Reference unix timestamp

    Returns:
        `now` minus years_back * 365.25 days, rounded to whole seconds
    """
    return now - int(round(years_back * DAYS_PER_YEAR * SECONDS_PER_DAY))


def days_since(ts: int, now: int) -> int:
    """Whole days elapsed between `ts` and `now` (floor division)."""
    return (now - ts) // SECONDS_PER_DAY


def elapsed_days(since: datetime, now: datetime) -> int:
    """Whole days elapsed between two naive UTC datetimes."""
    return int((now - since).total_seconds() // SECONDS_PER_DAY)


def _zone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except (KeyError, ValueError):
        # Fallback to UTC for invalid timezone
        return ZoneInfo("UTC")


def format_timestamp(ts: int, tz_name: str = "UTC") -> str:
    """Format unix seconds as `YYYY-MM-DD HH:MM:SS` in the given timezone."""
    return datetime.fromtimestamp(ts, _zone(tz_name)).strftime("%Y-%m-%d %H:%M:%S")


def human_date(moment: datetime) -> str:
    """Long date for subjects and headers, e.g. `October 6, 2025`."""
    return f"{moment:%B} {moment.day}, {moment.year}"


def from_unix(ts: int, tz_name: str = "UTC") -> datetime:
    """Aware datetime for a unix timestamp in the given timezone."""
    return datetime.fromtimestamp(ts, _zone(tz_name))


def unix_to_naive_utc(ts: int) -> datetime:
    """Naive UTC datetime for a unix timestamp, for comparing with log rows."""
    return datetime.fromtimestamp(ts, UTC).replace(tzinfo=None)
