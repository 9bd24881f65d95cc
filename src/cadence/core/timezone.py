"""Helpers that interpret and format instants in the user's fixed timezone.

Tool arguments carry wall-clock values (``YYYY-MM-DDTHH:MM:SS``) without an
offset; the configured timezone is the only place an offset comes from.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, tzinfo
from functools import lru_cache
from zoneinfo import ZoneInfo

WEEKDAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


@lru_cache(maxsize=16)
def get_zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def parse_local(value: str, tz: tzinfo) -> datetime:
    """Parse an ISO string as wall-clock time in ``tz``.

    Values that already carry an offset are converted instead of relabelled.
    """

    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=tz)
    return parsed.astimezone(tz)


def to_local(value: datetime, tz: tzinfo) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=tz)
    return value.astimezone(tz)


def start_of_day(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def end_of_day(day: date, tz: tzinfo) -> datetime:
    return datetime.combine(day, time(23, 59, 59), tzinfo=tz)


def add_days(value: datetime, days: int) -> datetime:
    """Shift by calendar days, keeping the wall-clock time."""

    return value + timedelta(days=days)


def weekday_name(day: date) -> str:
    return WEEKDAY_NAMES[day.weekday()]


def format_time(value: datetime, tz: tzinfo) -> str:
    local = to_local(value, tz)
    return f"{local.strftime('%I').lstrip('0')}:{local:%M} {local:%p}"


def format_date(value: datetime, tz: tzinfo) -> str:
    local = to_local(value, tz)
    return f"{local.month}/{local.day}/{local.year}"


def format_datetime(value: datetime, tz: tzinfo) -> str:
    return f"{format_date(value, tz)}, {format_time(value, tz)}"


def format_long_date(day: date) -> str:
    return f"{weekday_name(day)}, {day:%B} {day.day}, {day.year}"


def is_in_past(value: datetime, now: datetime) -> bool:
    return value < now
