from __future__ import annotations

import calendar
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union


DateLike = Union[str, date, datetime]


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today() -> date:
    return utcnow().date()


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 datetime string and normalize to UTC-naive datetime.

    - None / "" -> None
    - "YYYY-MM-DDTHH:MM" (naive) is interpreted as UTC
    - "...Z" or "...+/-HH:MM" is converted to UTC and tzinfo is stripped
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None

    # Accept trailing Z
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)

    # Normalize to UTC-naive
    if dt.tzinfo is None:
        # interpret naive as UTC
        return dt.replace(tzinfo=None)

    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_date(value: Optional[DateLike]) -> Optional[date]:
    """
    Normalize a business date.

    Accepts date objects, datetimes (date part is kept) and ISO strings
    ("YYYY-MM-DD" or a full timestamp, of which only the day is kept).
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip()
    if not s:
        return None
    if len(s) == 10:
        return date.fromisoformat(s)
    return parse_iso_datetime(s).date()


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def to_iso_date(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d is not None else None


def period_of(value: DateLike) -> str:
    """Return the "YYYY-MM" accounting period a date belongs to."""
    d = parse_iso_date(value)
    return f"{d.year:04d}-{d.month:02d}"


def period_bounds(period: str) -> tuple[date, date]:
    """First and last calendar day of a "YYYY-MM" period."""
    try:
        year_s, month_s = period.split("-")
        year, month = int(year_s), int(month_s)
        last_day = calendar.monthrange(year, month)[1]
    except (ValueError, calendar.IllegalMonthError):
        raise ValueError(f"Invalid period '{period}', expected YYYY-MM")
    return date(year, month, 1), date(year, month, last_day)


def month_end(d: date) -> date:
    return date(d.year, d.month, calendar.monthrange(d.year, d.month)[1])


def month_ends_between(start: date, stop: date) -> list[date]:
    """
    Month-end dates from the end of start's month while strictly before stop.
    """
    ends = []
    current = month_end(start)
    while current < stop:
        ends.append(current)
        current = month_end(current + timedelta(days=1))
    return ends
