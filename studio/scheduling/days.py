"""
Date and weekday helpers.

All date-keyed records use ISO strings ('2025-03-10'); comparing two of them
as strings is the same as comparing the dates.
"""
from datetime import date, timedelta
from typing import Union


WEEKDAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]

DateLike = Union[date, str]


def weekday_index(day_name: str) -> int:
    """'Mon' → 0 ... 'Sun' → 6"""
    return WEEKDAYS.index(day_name)


def get_day_name(d: DateLike) -> str:
    """date → 'Mon', 'Tue', etc."""
    return WEEKDAYS[as_date(d).weekday()]


def as_date(d: DateLike) -> date:
    return date.fromisoformat(d) if isinstance(d, str) else d


def to_iso(d: DateLike) -> str:
    """date or ISO string → 'YYYY-MM-DD'. Strings are re-validated."""
    return as_date(d).isoformat()


def month_key(d: DateLike) -> str:
    """'2025-03-10' → '2025-03'"""
    return to_iso(d)[:7]


def week_start(d: DateLike) -> date:
    """Monday of the week containing d (Sunday belongs to the week before)."""
    d = as_date(d)
    return d - timedelta(days=d.weekday())


def week_dates(d: DateLike) -> list[date]:
    """Mon–Fri dates of the week containing d."""
    monday = week_start(d)
    return [monday + timedelta(days=i) for i in range(5)]  # Mon-Fri only


def shift_week(d: DateLike, weeks: int) -> date:
    return as_date(d) + timedelta(weeks=weeks)


def month_weekdays(key: str) -> list[date]:
    """All Mon–Fri dates of a 'YYYY-MM' month."""
    year, month = (int(p) for p in key.split("-"))
    d = date(year, month, 1)
    days = []
    while d.month == month:
        if d.weekday() < 5:
            days.append(d)
        d += timedelta(days=1)
    return days


def parse_sheet_date(value: str) -> str:
    """
    Roster exports carry 'DD/MM/YYYY', 'DD-MM-YY' or already-ISO dates.
    Returns ISO; anything unrecognised is returned untouched.
    """
    value = (value or "").strip()
    if not value:
        return value
    sep = "/" if "/" in value else "-" if "-" in value else None
    if sep is None:
        return value
    parts = value.split(sep)
    if len(parts) != 3:
        return value
    if len(parts[0]) == 4:
        return value
    day, month, year = parts
    if len(year) == 2:
        year = "20" + year
    return f"{year}-{month.zfill(2)}-{day.zfill(2)}"
