from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional, Set

from dateutil.relativedelta import relativedelta

from app.db.models import RecurrenceFrequency
from app.utils.datetime_utils import (
    local_to_utc,
    to_utc,
    truncate_to_minute,
    utc_now,
)

DEFAULT_DAILY_TIME = "09:00"

HORIZON_DAYS = {
    RecurrenceFrequency.DAILY: 90,
    RecurrenceFrequency.TIMES_PER_DAY: 90,
    RecurrenceFrequency.WEEKLY: 180,
    RecurrenceFrequency.MONTHLY: 730,
    RecurrenceFrequency.YEARLY: 1825,
}


def horizon_days_for(frequency: RecurrenceFrequency, interval: int = 1) -> int:
    """How far ahead occurrences are pre-generated for a pattern."""
    if frequency == RecurrenceFrequency.CUSTOM:
        if interval <= 3:
            return 90
        if interval <= 14:
            return 180
        return 365
    return HORIZON_DAYS.get(frequency, 90)


def _sunday_based_weekday(day: date) -> int:
    """0 = Sunday ... 6 = Saturday, the indexing used by ``days_of_week``."""
    return (day.weekday() + 1) % 7


def _iso_week_offset(start_day: date, day: date) -> int:
    start_monday = start_day - timedelta(days=start_day.weekday())
    day_monday = day - timedelta(days=day.weekday())
    return (day_monday - start_monday).days // 7


def _month_offset(start_day: date, day: date) -> int:
    delta = relativedelta(day.replace(day=1), start_day.replace(day=1))
    return delta.years * 12 + delta.months


def is_included_day(rule, start_day: date, day: date) -> bool:
    """Whether the pattern of ``rule`` produces occurrences on calendar ``day``."""
    frequency = rule.frequency
    interval = max(rule.interval or 1, 1)

    if day < start_day:
        return False

    if frequency in (RecurrenceFrequency.DAILY, RecurrenceFrequency.TIMES_PER_DAY):
        return True

    if frequency == RecurrenceFrequency.WEEKLY:
        if _iso_week_offset(start_day, day) % interval != 0:
            return False
        weekday = _sunday_based_weekday(day)
        if rule.days_of_week:
            return weekday in rule.days_of_week
        return weekday == _sunday_based_weekday(start_day)

    if frequency == RecurrenceFrequency.MONTHLY:
        if _month_offset(start_day, day) % interval != 0:
            return False
        # relativedelta clamps day 31 to the last day of shorter months
        target = day + relativedelta(day=rule.day_of_month or start_day.day)
        return day == target

    if frequency == RecurrenceFrequency.YEARLY:
        if (day.year - start_day.year) % interval != 0:
            return False
        return day.month == start_day.month and day.day == start_day.day

    if frequency == RecurrenceFrequency.CUSTOM:
        return (day - start_day).days % interval == 0

    return False


def times_for_day(rule, default_daily_time: str = DEFAULT_DAILY_TIME) -> List[str]:
    times = list(rule.daily_times or []) or [default_daily_time]
    if rule.frequency == RecurrenceFrequency.TIMES_PER_DAY and rule.times_per_day:
        times = times[: rule.times_per_day]
    return times


def _excluded_instants(excluded: Optional[Iterable[datetime]]) -> Set[datetime]:
    return {truncate_to_minute(to_utc(value)) for value in (excluded or [])}


def expand(
    rule,
    horizon_days: Optional[int] = None,
    default_daily_time: str = DEFAULT_DAILY_TIME,
    now: Optional[datetime] = None,
) -> List[datetime]:
    """
    Expand a recurrence rule into the concrete UTC instants it produces.

    The result is bounded by ``[now, min(rule.end_date, now + horizon_days)]``,
    sorted, and free of excluded dates. Calling it again with the same inputs
    gives the same instants, so materializing the output is safely repeatable.

    ``rule`` is anything with the RecurrenceRule pattern attributes; naive
    datetimes on it are read as UTC.

    Args:
        rule: Recurrence rule (ORM row or equivalent object)
        horizon_days: Generation window; derived from the frequency when omitted
        default_daily_time: Time of day used when the rule has no ``daily_times``
        now: Evaluation instant (defaults to the current UTC time)

    Returns:
        List[datetime]: Aware UTC datetimes in ascending order
    """
    current = to_utc(now) if now else utc_now()
    if horizon_days is None:
        horizon_days = horizon_days_for(rule.frequency, rule.interval or 1)

    horizon_end = current + timedelta(days=horizon_days)
    effective_end = horizon_end
    if rule.end_date is not None:
        effective_end = min(to_utc(rule.end_date), horizon_end)
    if effective_end < current:
        return []

    start_day = to_utc(rule.start_date).date()
    times = times_for_day(rule, default_daily_time)
    excluded = _excluded_instants(getattr(rule, "excluded_dates", None))

    # Local wall times can sit a calendar day either side of their UTC instant
    day = max(start_day, current.date() - timedelta(days=1))
    last_day = effective_end.date() + timedelta(days=1)

    instants: Set[datetime] = set()
    while day <= last_day:
        if is_included_day(rule, start_day, day):
            for hh_mm in times:
                instant = local_to_utc(day, hh_mm, rule.timezone)
                if not (current <= instant <= effective_end):
                    continue
                if truncate_to_minute(instant) in excluded:
                    continue
                instants.add(instant)
        day += timedelta(days=1)

    return sorted(instants)
