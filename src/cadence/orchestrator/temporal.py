"""Natural-language date resolution and the per-request verification ledger.

The model is bad at mapping "next Monday" to a calendar date, so every date
it uses for scheduling should come from :func:`resolve_date`. Each
``(ISO date, weekday)`` pair the resolver reports is written to the
:class:`VerificationLedger`, which the input validator consults before an
event is created.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Dict, Iterator, Optional, Tuple

import dateparser

from ..core.timezone import WEEKDAY_NAMES, weekday_name

_THIS_WEEK = re.compile(r"\b(this|upcoming|coming)\s+week\b", re.IGNORECASE)
_NEXT_WEEK = re.compile(r"\bnext\s+week\b", re.IGNORECASE)
_RANGE_SPLIT = re.compile(r"\s+(?:to|through|thru|until)\s+|\s+-\s+", re.IGNORECASE)
_WEEKDAY_PHRASE = re.compile(
    r"\b(?:(this|next|coming|upcoming|last)\s+)?(monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b",
    re.IGNORECASE,
)
_DAY_WORD = re.compile(r"\b(today|tonight|tomorrow|yesterday)\b", re.IGNORECASE)
_CLOCK_12H = re.compile(r"\b(\d{1,2})(?::(\d{2}))?\s*(am|pm)\b", re.IGNORECASE)
_CLOCK_24H = re.compile(r"\bat\s+(\d{1,2}):(\d{2})\b|\b(\d{1,2}):(\d{2})\b", re.IGNORECASE)
_CLOCK_WORD = re.compile(r"\b(noon|midday|midnight)\b", re.IGNORECASE)
_MONTH = (
    r"(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)"
)
_MONTH_NAME = re.compile(rf"\b{_MONTH}\b", re.IGNORECASE)
_MONTH_DAY = re.compile(
    rf"\b{_MONTH}\.?\s+\d{{1,2}}(?:st|nd|rd|th)?\b(?:,?\s+\d{{4}}\b)?"
    rf"|\b\d{{1,2}}(?:st|nd|rd|th)?\s+(?:of\s+)?{_MONTH}\b(?:,?\s+\d{{4}}\b)?",
    re.IGNORECASE,
)
_ISO_DAY = re.compile(r"\b(\d{4})-(\d{2})-(\d{2})\b")
_ORDINAL_DAY = re.compile(r"\b\d{1,2}(?:st|nd|rd|th)\b", re.IGNORECASE)

_DAY_WORD_OFFSETS = {"today": 0, "tonight": 0, "tomorrow": 1, "yesterday": -1}


@dataclass(frozen=True)
class VerificationRecord:
    iso_date: str
    weekday: str
    resolved_at: datetime
    query: str = ""


class VerificationLedger:
    """Dates whose weekday was resolved authoritatively during one request."""

    def __init__(self) -> None:
        self._records: Dict[str, VerificationRecord] = {}

    def record(self, iso_date: str, weekday: str, *, at: datetime, query: str = "") -> VerificationRecord:
        entry = VerificationRecord(iso_date=iso_date, weekday=weekday, resolved_at=at, query=query)
        self._records[iso_date] = entry
        return entry

    def get(self, iso_date: str) -> Optional[VerificationRecord]:
        return self._records.get(iso_date)

    def matches(self, iso_date: str, weekday: str) -> bool:
        entry = self._records.get(iso_date)
        return entry is not None and entry.weekday.lower() == weekday.lower()

    def clear(self) -> None:
        self._records.clear()

    def __contains__(self, iso_date: object) -> bool:
        return iso_date in self._records

    def __iter__(self) -> Iterator[VerificationRecord]:
        return iter(self._records.values())

    def __len__(self) -> int:
        return len(self._records)


@dataclass(frozen=True)
class DateResolution:
    kind: str  # "this_week", "next_week", "range", "date" or "fallback"
    days: Tuple[date, ...]
    time_of_day: Optional[time] = None
    end_time_of_day: Optional[time] = None
    # Weekday named in the query when it disagrees with an explicit calendar date.
    conflicting_weekday: Optional[str] = None

    @property
    def start(self) -> date:
        return self.days[0]

    @property
    def end(self) -> date:
        return self.days[-1]


# ---------------------------------------------------------------------- week arithmetic


def this_week_monday(today: date) -> date:
    """Monday of the business week containing ``today``.

    Weekends roll forward: on Saturday or Sunday "this week" means the
    business week that starts next.
    """

    weekday = today.weekday()
    if weekday == 6:
        return today + timedelta(days=1)
    if weekday == 5:
        return today + timedelta(days=2)
    return today - timedelta(days=weekday)


def next_week_monday(today: date) -> date:
    weekday = today.weekday()
    return today + timedelta(days=1 if weekday == 6 else 7 - weekday)


def business_week(monday: date) -> Tuple[date, ...]:
    return tuple(monday + timedelta(days=offset) for offset in range(5))


# ---------------------------------------------------------------------- parsing


def _weekday_from_phrase(modifier: Optional[str], name: str, today: date) -> date:
    target = WEEKDAY_NAMES.index(name.capitalize())
    current = today.weekday()
    modifier = (modifier or "").lower()
    if modifier == "last":
        delta = (current - target) % 7 or 7
        return today - timedelta(days=delta)
    delta = (target - current) % 7
    if modifier == "next" and delta == 0:
        delta = 7
    return today + timedelta(days=delta)


def _parse_time_of_day(text: str) -> Optional[time]:
    word = _CLOCK_WORD.search(text)
    if word:
        return time(0, 0) if word.group(1).lower() == "midnight" else time(12, 0)
    match = _CLOCK_12H.search(text)
    if match:
        hour = int(match.group(1))
        minute = int(match.group(2) or 0)
        meridiem = match.group(3).lower()
        if not 1 <= hour <= 12 or minute > 59:
            return None
        if meridiem == "pm" and hour < 12:
            hour += 12
        if meridiem == "am" and hour == 12:
            hour = 0
        return time(hour, minute)
    match = _CLOCK_24H.search(text)
    if match:
        hour = int(match.group(1) or match.group(3))
        minute = int(match.group(2) or match.group(4))
        if hour < 24 and minute < 60:
            return time(hour, minute)
    return None


def _parse_natural(text: str, reference_now: datetime) -> Optional[date]:
    parsed = dateparser.parse(
        text,
        languages=["en"],
        settings={
            "RELATIVE_BASE": reference_now.replace(tzinfo=None),
            "PREFER_DATES_FROM": "future",
            "RETURN_AS_TIMEZONE_AWARE": False,
        },
    )
    return parsed.date() if parsed else None


def _explicit_date(text: str, reference_now: datetime) -> Optional[date]:
    """A written calendar date ("2026-01-19", "January 19", "19th of Jan") if the text has one."""

    iso = _ISO_DAY.search(text)
    if iso:
        try:
            return date(int(iso.group(1)), int(iso.group(2)), int(iso.group(3)))
        except ValueError:
            return None
    match = _MONTH_DAY.search(text)
    if match:
        return _parse_natural(match.group(0), reference_now)
    return None


def _has_date_token(text: str) -> bool:
    return any(
        pattern.search(text) for pattern in (_WEEKDAY_PHRASE, _DAY_WORD, _MONTH_NAME, _ISO_DAY, _ORDINAL_DAY)
    )


def _resolve_single(text: str, reference_now: datetime) -> Optional[date]:
    today = reference_now.date()
    explicit = _explicit_date(text, reference_now)
    if explicit is not None:
        return explicit
    phrase = _WEEKDAY_PHRASE.search(text)
    if phrase:
        return _weekday_from_phrase(phrase.group(1), phrase.group(2), today)
    word = _DAY_WORD.search(text)
    if word:
        return today + timedelta(days=_DAY_WORD_OFFSETS[word.group(1).lower()])
    return _parse_natural(text, reference_now)


def _split_span(text: str) -> Optional[Tuple[str, str]]:
    parts = _RANGE_SPLIT.split(text, maxsplit=1)
    if len(parts) != 2 or not all(part.strip() for part in parts):
        return None
    return parts[0], parts[1]


def _resolve_range(parts: Tuple[str, str], reference_now: datetime) -> Optional[Tuple[date, date]]:
    start = _resolve_single(parts[0], reference_now)
    end = _resolve_single(parts[1], reference_now)
    if start is None or end is None:
        return None
    if end < start and (start - end).days < 7:
        end += timedelta(days=7)
    if end < start:
        return None
    return start, end


def _conflicting_weekday(text: str, day: date) -> Optional[str]:
    phrase = _WEEKDAY_PHRASE.search(text)
    if phrase is None:
        return None
    stated = phrase.group(2).capitalize()
    return None if stated == weekday_name(day) else stated


def resolve_query(query: str, reference_now: datetime) -> DateResolution:
    """Resolve ``query`` against ``reference_now`` without touching any ledger.

    "X to Y" is a date range only when both sides name a day; "Monday from
    3pm to 4pm" is one date with a start and an end time.
    """

    text = query.strip()
    if not text:
        raise ValueError("query must not be empty")
    today = reference_now.date()

    if _THIS_WEEK.search(text):
        return DateResolution("this_week", business_week(this_week_monday(today)))
    if _NEXT_WEEK.search(text):
        return DateResolution("next_week", business_week(next_week_monday(today)))

    parts = _split_span(text)
    if parts is not None and all(_has_date_token(part) for part in parts):
        span = _resolve_range(parts, reference_now)
        if span is not None:
            return DateResolution("range", span)

    single = _resolve_single(text, reference_now)
    if single is None:
        return DateResolution("fallback", (today,))

    start_time, end_time = _parse_time_of_day(text), None
    if parts is not None:
        left, right = _parse_time_of_day(parts[0]), _parse_time_of_day(parts[1])
        if left is not None and right is not None:
            start_time, end_time = left, right
    return DateResolution(
        "date",
        (single,),
        time_of_day=start_time,
        end_time_of_day=end_time,
        conflicting_weekday=_conflicting_weekday(text, single),
    )


# ---------------------------------------------------------------------- reporting


def _render_week(resolution: DateResolution) -> str:
    label = "This week" if resolution.kind == "this_week" else "Next week"
    lines = [f"{weekday_name(day)} = {day.isoformat()}" for day in resolution.days]
    return (
        f"{label} (business days):\n"
        + "\n".join(lines)
        + f"\n\nTO GET CALENDAR EVENTS FOR {label.upper()}, USE THESE EXACT DATES:\n"
        f'start_date: "{resolution.start.isoformat()}"\n'
        f'end_date: "{resolution.end.isoformat()}"'
    )


def _render_range(resolution: DateResolution) -> str:
    start, end = resolution.start, resolution.end
    return (
        f"Date range: {start.isoformat()} ({weekday_name(start)}) to {end.isoformat()} ({weekday_name(end)})\n\n"
        "TO QUERY THIS RANGE, USE THESE EXACT DATES:\n"
        f'start_date: "{start.isoformat()}"\n'
        f'end_date: "{end.isoformat()}"'
    )


def _render_date(resolution: DateResolution) -> str:
    day = resolution.start
    report = f"{day.isoformat()} is a {weekday_name(day)}\n\n"
    if resolution.conflicting_weekday is not None:
        report += (
            f"WARNING: the query says {resolution.conflicting_weekday}, but {day.isoformat()} is a "
            f"{weekday_name(day)}. Ask the user which day they mean before scheduling anything.\n\n"
        )
    report += f'To use this date in calendar operations, use: "{day.isoformat()}"'
    if resolution.time_of_day is not None:
        start = datetime.combine(day, resolution.time_of_day)
        report += f'\nStart time on this date: "{start.strftime("%Y-%m-%dT%H:%M:%S")}"'
        if resolution.end_time_of_day is not None:
            end = datetime.combine(day, resolution.end_time_of_day)
            if end <= start:
                end += timedelta(days=1)
            report += f'\nEnd time: "{end.strftime("%Y-%m-%dT%H:%M:%S")}"'
    return report


def render_resolution(resolution: DateResolution, query: str) -> str:
    if resolution.kind in ("this_week", "next_week"):
        return _render_week(resolution)
    if resolution.kind == "range":
        return _render_range(resolution)
    if resolution.kind == "date":
        return _render_date(resolution)
    today = resolution.start
    return f'Could not find a date in "{query}". Current date: {weekday_name(today)}, {today.isoformat()}'


def resolve_date(query: str, reference_now: datetime, ledger: VerificationLedger) -> str:
    """Resolve ``query`` and record every reported date in ``ledger``."""

    resolution = resolve_query(query, reference_now)
    for day in resolution.days:
        ledger.record(day.isoformat(), weekday_name(day), at=reference_now, query=query)
    return render_resolution(resolution, query)
