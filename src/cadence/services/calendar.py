from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta, tzinfo
from typing import Iterable, List, Optional, Protocol, runtime_checkable

from ..core.timezone import to_local, weekday_name
from ..domain import AttendeeFrequency, CalendarEvent, CalendarStats, EventDraft, EventPatch


class CalendarError(Exception):
    """Base class for calendar backend failures."""


class EventNotFoundError(CalendarError):
    def __init__(self, event_id: str) -> None:
        super().__init__(f"Event {event_id!r} was not found.")
        self.event_id = event_id


class CalendarRequestError(CalendarError):
    """The backend understood the request and refused it."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(f"Calendar request failed ({status_code}): {message}")
        self.status_code = status_code
        self.message = message


class CalendarAuthError(CalendarError):
    """The access token was rejected. Fatal for the current request."""


class CalendarUnavailableError(CalendarError):
    """Transport failure or server-side error. Fatal for the current request."""


@runtime_checkable
class CalendarBackend(Protocol):
    """Async CRUD surface the tool executor talks to, keyed by access token."""

    async def list_events(
        self,
        token: str,
        start: datetime,
        end: datetime,
        *,
        max_results: Optional[int] = None,
    ) -> List[CalendarEvent]: ...

    async def get_event(self, token: str, event_id: str) -> CalendarEvent: ...

    async def create_event(self, token: str, draft: EventDraft) -> CalendarEvent: ...

    async def update_event(self, token: str, patch: EventPatch) -> CalendarEvent: ...

    async def delete_event(self, token: str, event_id: str) -> str: ...

    async def add_attendee(self, token: str, event_id: str, email: str) -> CalendarEvent: ...

    async def remove_attendee(self, token: str, event_id: str, email: str) -> CalendarEvent: ...

    async def get_stats(self, token: str) -> CalendarStats: ...

    async def aclose(self) -> None: ...


def stats_window(now: datetime, days: int) -> tuple[datetime, datetime]:
    """Trailing window of ``days`` whole days ending at ``now``."""

    return now - timedelta(days=days), now


def compute_stats(
    events: Iterable[CalendarEvent],
    *,
    window_start: datetime,
    window_end: datetime,
    tz: tzinfo,
    top_n: int = 5,
) -> CalendarStats:
    """Aggregate meeting time per weekday and attendee frequency.

    All-day events count towards ``total_events`` but carry no minutes.
    """

    total_events = 0
    total_minutes = 0.0
    minutes_by_weekday: dict[str, float] = {}
    attendee_counts: Counter[str] = Counter()

    for event in events:
        total_events += 1
        if event.is_all_day:
            continue
        assert event.start.date_time is not None and event.end.date_time is not None
        start = to_local(event.start.date_time, tz)
        end = to_local(event.end.date_time, tz)
        minutes = max((end - start).total_seconds() / 60, 0.0)
        total_minutes += minutes
        day_key = weekday_name(start.date())
        minutes_by_weekday[day_key] = minutes_by_weekday.get(day_key, 0.0) + minutes
        for attendee in event.attendees:
            if attendee.email:
                attendee_counts[attendee.email.lower()] += 1

    top = tuple(
        AttendeeFrequency(email=email, meeting_count=count)
        for email, count in attendee_counts.most_common(top_n)
    )
    return CalendarStats(
        window_start=window_start,
        window_end=window_end,
        total_events=total_events,
        total_meeting_minutes=total_minutes,
        minutes_by_weekday=minutes_by_weekday,
        top_attendees=top,
    )
