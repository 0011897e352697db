import re
from datetime import date, datetime, time, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.relativedelta import relativedelta

HH_MM_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def utc_now() -> datetime:
    """
    Get current UTC datetime as a timezone-aware datetime.

    Returns:
        datetime: Current UTC datetime with timezone info
    """
    return datetime.now(timezone.utc)


def naive_utc_now() -> datetime:
    """
    Get current UTC datetime as a naive datetime (no timezone info).
    This is what gets stored in the DateTime columns, which don't keep an offset.

    Returns:
        datetime: Current UTC datetime without timezone info
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime object to UTC timezone-aware datetime.

    Args:
        dt: Datetime object to convert

    Returns:
        datetime: UTC timezone-aware datetime
    """
    if dt.tzinfo is None:
        # Assume naive datetime is in UTC
        return dt.replace(tzinfo=timezone.utc)
    else:
        return dt.astimezone(timezone.utc)


def to_naive_utc(dt: datetime) -> datetime:
    """
    Convert a datetime object to naive UTC (no timezone info).

    Args:
        dt: Datetime object to convert

    Returns:
        datetime: Naive UTC datetime
    """
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    else:
        utc_dt = dt.astimezone(timezone.utc)
        return utc_dt.replace(tzinfo=None)


def from_naive_utc(dt: datetime, zone: ZoneInfo = ZoneInfo("UTC")) -> datetime:
    """
    Convert a naive UTC datetime (no timezone info) to a timezone-aware datetime.

    Args:
        dt: Naive UTC datetime to convert
        zone: Timezone to use for the conversion (default: UTC)

    Returns:
        datetime: Timezone-aware datetime
    """
    if dt.tzinfo is not None:
        raise ValueError("Input datetime must be naive (no timezone info)")
    return dt.replace(tzinfo=timezone.utc).astimezone(zone)


def truncate_to_minute(dt: datetime) -> datetime:
    return dt.replace(second=0, microsecond=0)


def is_valid_timezone(name: Optional[str]) -> bool:
    """Whether ``name`` is an IANA zone identifier known to the tz database."""
    if not name:
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def parse_hh_mm(value: str) -> Tuple[int, int]:
    """
    Parse a 24h ``HH:MM`` string into ``(hour, minute)``.

    Raises:
        ValueError: INVALID_TIME_FORMAT when the string is malformed or out of range
    """
    match = HH_MM_PATTERN.match(value or "")
    if not match:
        raise ValueError(f"INVALID_TIME_FORMAT: '{value}' is not a valid HH:MM time")
    return int(match.group(1)), int(match.group(2))


def local_to_utc(local_date: date, hh_mm: str, tz_name: str) -> datetime:
    """
    Convert a wall-clock ``HH:MM`` on ``local_date`` in ``tz_name`` to an aware UTC instant.

    An ambiguous fall-back wall time takes the post-transition offset
    (``fold=1``). A wall time inside a spring-forward gap does not exist; it
    is moved forward by the size of the gap, so 02:30 on a day that skips
    02:00-03:00 becomes 03:30 local. Never raises for valid input.
    """
    hour, minute = parse_hh_mm(hh_mm)
    zone = ZoneInfo(tz_name)

    wall = datetime.combine(local_date, time(hour, minute), tzinfo=zone).replace(fold=1)
    instant = wall.astimezone(timezone.utc)

    # Round-tripping a gap time lands on a different wall clock
    if instant.astimezone(zone).replace(tzinfo=None) != wall.replace(tzinfo=None):
        gap = wall.utcoffset() - wall.replace(fold=0).utcoffset()
        instant += gap
    return instant


def utc_to_local(instant: datetime, tz_name: str) -> datetime:
    """Aware datetime for ``instant`` (naive means UTC) in the ``tz_name`` zone."""
    return to_utc(instant).astimezone(ZoneInfo(tz_name))


def month_period_key(now: Optional[datetime] = None) -> str:
    """Year-month key (``YYYY-MM``) used to scope monthly budget alerts."""
    current = to_utc(now) if now else utc_now()
    return f"{current.year:04d}-{current.month:02d}"


def month_bounds(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Naive UTC ``[start, end)`` of the calendar month containing ``now``."""
    current = to_naive_utc(now) if now else naive_utc_now()
    start = datetime(current.year, current.month, 1)
    return start, start + relativedelta(months=1)
