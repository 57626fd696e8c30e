"""UTC timestamps, business days in the firm's reference timezone."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def now_utc() -> datetime:
    """
    Current time in UTC.

    Use this instead of datetime.now() for every stored timestamp.
    """
    return datetime.now(timezone.utc)


def _zone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone: {tz_name}")


def calendar_day(value: date | datetime, tz_name: str) -> date:
    """
    Calendar day of a date or datetime in a fixed reference timezone.

    Plain dates are returned unchanged. Datetimes must be timezone-aware and
    are converted to tz_name before the day is taken, so the same instant
    always lands on the same business day regardless of the caller's zone.

    Raises:
        ValueError: If datetime is naive or timezone name is invalid
    """
    if not isinstance(value, datetime):
        return value
    if value.tzinfo is None:
        raise ValueError(
            "Cannot take the calendar day of a naive datetime. Datetime must be timezone-aware."
        )
    return value.astimezone(_zone(tz_name)).date()


def today_in(tz_name: str) -> date:
    """Today's calendar date in the given timezone."""
    return calendar_day(now_utc(), tz_name)
