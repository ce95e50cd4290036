"""
Week key resolution.

Every date that indexes the trail or the completion map goes through
``canonical_week_key`` first, so callers never special-case which day of the
week they happened to pass. Keys are the ISO date of the Monday of the week.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta

from studytrail.trail.models import DAYS, DayId


def _as_date(value: date | datetime | str) -> date:
    if isinstance(value, datetime):
        # Calendar date of the value itself (local zero hour), no tz conversion
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return datetime.fromisoformat(text).date()
        except ValueError as exc:
            raise ValueError(f"Not an ISO date: {value!r}") from exc
    raise TypeError(f"Unsupported date value: {type(value).__name__}")


def week_start(value: date | datetime | str) -> date:
    """Monday of the week containing ``value``."""
    day = _as_date(value)
    return day - timedelta(days=day.weekday())


def canonical_week_key(value: date | datetime | str) -> str:
    """
    Map any date to its Monday-anchored week key.

    Args:
        value: A date, datetime or ISO date string

    Returns:
        ``YYYY-MM-DD`` of the Monday of that week
    """
    return week_start(value).isoformat()


def parse_week_key(key: str) -> date:
    """
    Parse a week key back into the Monday it names.

    Raises:
        ValueError: If the key is not an ISO date or is not a Monday
    """
    monday = _as_date(key)
    if monday.weekday() != 0:
        raise ValueError(f"Week key {key!r} is not Monday-anchored")
    return monday


def current_week_key(today: date | None = None) -> str:
    return canonical_week_key(today or date.today())


def shift_week(key: str, weeks: int) -> str:
    """Week key ``weeks`` weeks before (negative) or after (positive) ``key``."""
    return (parse_week_key(key) + timedelta(weeks=weeks)).isoformat()


def is_current_week(key: str, today: date | None = None) -> bool:
    return parse_week_key(key).isoformat() == current_week_key(today)


def day_id_for(value: date | datetime | str) -> DayId:
    """Day bucket a date falls into."""
    return DAYS[_as_date(value).weekday()]


def week_dates(key: str) -> dict[DayId, date]:
    """Calendar date of every day bucket in the week."""
    monday = parse_week_key(key)
    return {day: monday + timedelta(days=offset) for offset, day in enumerate(DAYS)}
