from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Literal, Mapping, Optional

from ..core.timezone import (
    add_days,
    end_of_day,
    format_date,
    format_datetime,
    format_long_date,
    format_time,
    is_in_past,
    parse_local,
    start_of_day,
    to_local,
)
from ..domain import CalendarEvent, EventDraft, EventPatch
from ..services.calendar import CalendarBackend, CalendarRequestError, EventNotFoundError
from .context import RequestContext
from .temporal import resolve_date as resolve_date_text
from .tools import get_tool, register_tool

logger = logging.getLogger(__name__)

LISTING_FOOTER = """CRITICAL INSTRUCTIONS:
1. When telling the user about these events, copy the EXACT day of week and date shown above
2. DO NOT recalculate what day of week a date falls on
3. DO NOT reformat dates or change the day names
4. The same date always has the same day name; never call it by two different names

Note: Use the event ID to update, delete, or manage attendees."""


@dataclass
class ToolContext:
    backend: CalendarBackend
    request: RequestContext
    default_range_days: int = 7
    max_results: int = 500

    @property
    def token(self) -> str:
        return self.request.access_token


@dataclass(frozen=True)
class ToolOutcome:
    content: str
    modified_events: bool = False
    is_error: bool = False


def _error(content: str) -> ToolOutcome:
    return ToolOutcome(content=content, is_error=True)


def _event_day(event: CalendarEvent, ctx: ToolContext):
    if event.start.date_time is not None:
        return to_local(event.start.date_time, ctx.request.tz).date()
    return event.start.day


def _describe_event(event: CalendarEvent, ctx: ToolContext) -> str:
    day = _event_day(event, ctx)
    attendees = ", ".join(attendee.label for attendee in event.attendees if attendee.email)
    with_clause = f" with {attendees}" if attendees else ""
    if event.is_all_day:
        return f"- {event.title} on {format_long_date(day)} (All day){with_clause} [ID: {event.id}]"
    assert event.start.date_time is not None and event.end.date_time is not None
    tz = ctx.request.tz
    return (
        f"- {event.title} on {format_long_date(day)} from {format_time(event.start.date_time, tz)} "
        f"to {format_time(event.end.date_time, tz)}{with_clause} [ID: {event.id}]"
    )


def _when(event: CalendarEvent, ctx: ToolContext) -> str:
    if event.start.date_time is None:
        return f"{format_long_date(event.start.day)} (All day)" if event.start.day else "scheduled"
    local = to_local(event.start.date_time, ctx.request.tz)
    return f"{format_long_date(local.date())} at {format_time(local, ctx.request.tz)}"


def _link(event: CalendarEvent) -> str:
    return f"\nView in calendar: {event.html_link}" if event.html_link else ""


def _range_bound(value: str, ctx: ToolContext, *, is_end: bool) -> datetime:
    tz = ctx.request.tz
    if len(value) <= 10:
        day = datetime.fromisoformat(value).date()
        return end_of_day(day, tz) if is_end else start_of_day(day, tz)
    return parse_local(value, tz)


async def _fetch_events(ctx: ToolContext, start: datetime, end: datetime) -> List[CalendarEvent]:
    params = {"start": start.isoformat(), "end": end.isoformat()}
    cached = ctx.request.cache.get("list_events", params)
    if cached is not None:
        logger.debug("Request cache hit for list_events %s", params)
        return cached
    events = await ctx.backend.list_events(ctx.token, start, end, max_results=ctx.max_results)
    ctx.request.cache.set("list_events", params, events)
    return events


# ---------------------------------------------------------------------- read-only tools


@register_tool(
    "resolve_date",
    description=(
        "Convert a natural-language date such as 'next Monday', 'this week' or 'tomorrow at 3pm' into exact "
        "ISO dates and weekday names. ALWAYS call this before using any relative date in another tool."
    ),
    params={"query": "The date phrase exactly as the user wrote it."},
    tags=["dates"],
)
async def resolve_date(ctx: ToolContext, query: str) -> ToolOutcome:
    request = ctx.request
    return ToolOutcome(resolve_date_text(query, request.now, request.ledger))


@register_tool(
    "list_events",
    description=(
        "List calendar events between two dates. Dates must be exact ISO values (YYYY-MM-DD or "
        "YYYY-MM-DDTHH:MM:SS) obtained from resolve_date. Defaults to the coming week."
    ),
    params={
        "start_date": "Start of the range, YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS.",
        "end_date": "End of the range, YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS.",
    },
    tags=["events"],
)
async def list_events(ctx: ToolContext, start_date: Optional[str] = None, end_date: Optional[str] = None) -> ToolOutcome:
    now = ctx.request.now
    start = _range_bound(start_date, ctx, is_end=False) if start_date else start_of_day(now.date(), ctx.request.tz)
    end = _range_bound(end_date, ctx, is_end=True) if end_date else add_days(now, ctx.default_range_days)
    if end < start:
        return _error(f"end_date ({end_date}) must not be before start_date ({start_date}).")

    events = await _fetch_events(ctx, start, end)
    if not events:
        return ToolOutcome("No events found in the specified date range.")
    lines = [_describe_event(event, ctx) for event in events]
    return ToolOutcome(f"Found {len(events)} events:\n" + "\n".join(lines) + "\n\n" + LISTING_FOOTER)


@register_tool(
    "check_availability",
    description="Check whether a time slot is free before scheduling. Reports conflicts and a suggested alternative.",
    params={
        "start_time": "Slot start, YYYY-MM-DDTHH:MM:SS in the user's timezone.",
        "end_time": "Slot end, YYYY-MM-DDTHH:MM:SS in the user's timezone.",
    },
    tags=["events"],
)
async def check_availability(ctx: ToolContext, start_time: str, end_time: str) -> ToolOutcome:
    tz = ctx.request.tz
    start = parse_local(start_time, tz)
    end = parse_local(end_time, tz)
    day_start, day_end = start_of_day(start.date(), tz), end_of_day(start.date(), tz)
    events = await _fetch_events(ctx, day_start, day_end)

    conflicts: List[CalendarEvent] = []
    for event in events:
        if event.is_all_day:
            conflicts.append(event)
            continue
        assert event.start.date_time is not None and event.end.date_time is not None
        if start < to_local(event.end.date_time, tz) and end > to_local(event.start.date_time, tz):
            conflicts.append(event)

    slot = f"{format_time(start, tz)} - {format_time(end, tz)}"
    if not conflicts:
        return ToolOutcome(f"✅ The time slot {slot} is AVAILABLE. You can proceed to create the event.")

    details = []
    conflict_ends = []
    for event in conflicts:
        if event.is_all_day:
            details.append(f'- "{event.title}" (All day)')
            conflict_ends.append(day_end)
        else:
            assert event.start.date_time is not None and event.end.date_time is not None
            details.append(
                f'- "{event.title}" ({format_time(event.start.date_time, tz)} - {format_time(event.end.date_time, tz)})'
            )
            conflict_ends.append(to_local(event.end.date_time, tz))
    suggestion = max(conflict_ends)
    return ToolOutcome(
        f"⚠️ CONFLICT DETECTED: The time slot {slot} overlaps with:\n"
        + "\n".join(details)
        + f"\n\nSuggested alternative: {format_time(suggestion, tz)} (after the last conflicting event)\n\n"
        "Do NOT create the event unless the user confirms they want to schedule despite the conflict."
    )


@register_tool(
    "get_stats",
    description="Summarise recent meeting load: total meetings, hours, time per weekday and most frequent attendees.",
    tags=["stats"],
)
async def get_stats(ctx: ToolContext) -> ToolOutcome:
    stats = await ctx.backend.get_stats(ctx.token)
    by_day = ", ".join(f"{day}: {round(minutes / 60, 1)}h" for day, minutes in stats.minutes_by_weekday.items())
    attendees = ", ".join(f"{item.email} ({item.meeting_count} meetings)" for item in stats.top_attendees)
    return ToolOutcome(
        f"Calendar Statistics (last {stats.window_days} days):\n"
        f"- Total meetings: {stats.total_events}\n"
        f"- Total meeting time: {stats.total_meeting_hours} hours\n"
        f"- Average meetings per day: {stats.average_meetings_per_day}\n"
        f"- Meeting time by day: {by_day or 'None'}\n"
        f"- Most frequent attendees: {attendees or 'None'}"
    )


@register_tool(
    "draft_email",
    description=(
        "Prepare an email to attendees. Returns a compose request; you must then write the full email "
        "body for the user in your next reply."
    ),
    params={
        "to": "Recipient email addresses.",
        "subject": "Email subject line.",
        "context": "What the email should say or which event it concerns.",
        "tone": "Writing tone. Defaults to friendly.",
    },
    tags=["email"],
)
async def draft_email(
    ctx: ToolContext,
    to: List[str],
    subject: str,
    context: str,
    tone: Optional[Literal["formal", "casual", "friendly"]] = None,
) -> ToolOutcome:
    tone = tone or "friendly"
    return ToolOutcome(
        "COMPOSE EMAIL REQUEST\n"
        "=====================\n\n"
        f"To: {', '.join(to)}\n"
        f"Subject: {subject}\n"
        f"Tone: {tone}\n"
        f"Context: {context}\n\n"
        "Now compose the full email draft for the user to copy. Include a proper greeting, body "
        f"and sign-off in a {tone} tone."
    )


# ---------------------------------------------------------------------- mutating tools


@register_tool(
    "create_event",
    description=(
        "Create a calendar event. Times are YYYY-MM-DDTHH:MM:SS in the user's timezone with no offset. "
        "If the user named a weekday, call resolve_date first and use the date it returns."
    ),
    mutates=True,
    params={
        "title": "Event title.",
        "start_time": "Start, YYYY-MM-DDTHH:MM:SS.",
        "end_time": "End, YYYY-MM-DDTHH:MM:SS. Must be after start_time.",
        "description": "Optional notes.",
        "attendees": "Optional attendee email addresses.",
        "location": "Optional location.",
    },
    tags=["events"],
)
async def create_event(
    ctx: ToolContext,
    title: str,
    start_time: str,
    end_time: str,
    description: Optional[str] = None,
    attendees: Optional[List[str]] = None,
    location: Optional[str] = None,
) -> ToolOutcome:
    request = ctx.request
    start = parse_local(start_time, request.tz)
    end = parse_local(end_time, request.tz)
    if is_in_past(start, request.now):
        tomorrow = add_days(start, 1)
        return ToolOutcome(
            f"⚠️ Cannot create event in the past. The requested time ({format_datetime(start, request.tz)}) "
            f"has already passed. Would you like to schedule for {format_date(tomorrow, request.tz)} at "
            f"{format_time(start, request.tz)} instead?",
            is_error=True,
        )

    draft = EventDraft(
        title=title,
        start=start,
        end=end,
        time_zone=request.time_zone_name,
        description=description,
        location=location,
        attendees=tuple(email.strip() for email in attendees or ()),
    )
    event = await ctx.backend.create_event(ctx.token, draft)
    return ToolOutcome(
        f'✅ Event created: "{event.title}" on {_when(event, ctx)} [ID: {event.id}]{_link(event)}',
        modified_events=True,
    )


@register_tool(
    "update_event",
    description=(
        "Change fields of an existing event. Only the supplied fields change. The event_id must come from "
        "a list_events result in this conversation."
    ),
    mutates=True,
    params={
        "event_id": "Event ID exactly as shown in [ID: ...] by list_events.",
        "title": "New title.",
        "start_time": "New start, YYYY-MM-DDTHH:MM:SS.",
        "end_time": "New end, YYYY-MM-DDTHH:MM:SS.",
        "description": "New description.",
        "location": "New location.",
    },
    tags=["events"],
)
async def update_event(
    ctx: ToolContext,
    event_id: str,
    title: Optional[str] = None,
    start_time: Optional[str] = None,
    end_time: Optional[str] = None,
    description: Optional[str] = None,
    location: Optional[str] = None,
) -> ToolOutcome:
    tz = ctx.request.tz
    patch = EventPatch(
        event_id=event_id,
        time_zone=ctx.request.time_zone_name,
        title=title or None,
        start=parse_local(start_time, tz) if start_time else None,
        end=parse_local(end_time, tz) if end_time else None,
        description=description,
        location=location,
    )
    if patch.is_empty:
        return _error("update_event needs at least one field to change (title, start_time, end_time, description or location).")
    event = await ctx.backend.update_event(ctx.token, patch)
    return ToolOutcome(
        f'✅ Event updated: "{event.title}" on {_when(event, ctx)} [ID: {event.id}]{_link(event)}',
        modified_events=True,
    )


@register_tool(
    "delete_event",
    description="Delete an event by ID. The ID must come from a list_events result.",
    mutates=True,
    params={"event_id": "Event ID exactly as shown in [ID: ...] by list_events."},
    tags=["events"],
)
async def delete_event(ctx: ToolContext, event_id: str) -> ToolOutcome:
    event = await ctx.backend.get_event(ctx.token, event_id)
    title = await ctx.backend.delete_event(ctx.token, event_id) or event.title
    return ToolOutcome(f'✅ Event "{title}" deleted successfully.', modified_events=True)


def _attendee_summary(event: CalendarEvent) -> str:
    return ", ".join(attendee.email for attendee in event.attendees if attendee.email) or "none"


@register_tool(
    "add_attendee",
    description="Invite someone to an existing event.",
    mutates=True,
    params={"event_id": "Event ID from list_events.", "email": "Email address to invite."},
    tags=["attendees"],
)
async def add_attendee(ctx: ToolContext, event_id: str, email: str) -> ToolOutcome:
    email = email.strip()
    event = await ctx.backend.get_event(ctx.token, event_id)
    if event.has_attendee(email):
        return _error(f'{email} is already an attendee of "{event.title}". Current attendees: {_attendee_summary(event)}')
    updated = await ctx.backend.add_attendee(ctx.token, event_id, email)
    return ToolOutcome(
        f'✅ Added {email} to "{updated.title}". Current attendees: {_attendee_summary(updated)}{_link(updated)}',
        modified_events=True,
    )


@register_tool(
    "remove_attendee",
    description="Remove someone from an existing event.",
    mutates=True,
    params={"event_id": "Event ID from list_events.", "email": "Email address to remove."},
    tags=["attendees"],
)
async def remove_attendee(ctx: ToolContext, event_id: str, email: str) -> ToolOutcome:
    email = email.strip()
    event = await ctx.backend.get_event(ctx.token, event_id)
    if not event.has_attendee(email):
        return _error(f'{email} is not an attendee of "{event.title}". Current attendees: {_attendee_summary(event)}')
    updated = await ctx.backend.remove_attendee(ctx.token, event_id, email)
    return ToolOutcome(
        f'✅ Removed {email} from "{updated.title}". Current attendees: {_attendee_summary(updated)}{_link(updated)}',
        modified_events=True,
    )


# ---------------------------------------------------------------------- dispatch


class ToolExecutor:
    """Single dispatch point between tool invocations and the calendar backend.

    Conversational failures (not-found ids, rejected requests, bad values)
    come back as error outcomes. Authentication and availability failures
    of the backend propagate and end the request.
    """

    def __init__(self, backend: CalendarBackend, *, default_range_days: int = 7, max_results: int = 500) -> None:
        self.backend = backend
        self.default_range_days = default_range_days
        self.max_results = max_results

    async def execute(self, name: str, arguments: Mapping[str, Any], request: RequestContext) -> ToolOutcome:
        spec = get_tool(name)
        if spec is None:
            logger.warning("Model requested unknown tool %s", name)
            return _error(f"Unknown tool: {name}")

        accepted: Dict[str, Any] = {}
        for key, value in arguments.items():
            if key in spec.parameter_names:
                accepted[key] = value
            else:
                logger.info("Dropping unknown argument %s for %s", key, name)

        ctx = ToolContext(
            backend=self.backend,
            request=request,
            default_range_days=self.default_range_days,
            max_results=self.max_results,
        )
        try:
            spec.signature.bind(ctx, **accepted)
        except TypeError as exc:
            return _error(f"Invalid arguments for {name}: {exc}")

        try:
            outcome: ToolOutcome = await spec.func(ctx, **accepted)
        except EventNotFoundError as exc:
            return _error(
                f"Event not found: {exc.event_id}. It may have been deleted or the ID is wrong. "
                "Call list_events to get current event IDs."
            )
        except CalendarRequestError as exc:
            return _error(f"Error executing {name}: {exc.message}")
        except ValueError as exc:
            return _error(f"Error executing {name}: {exc}")

        if outcome.modified_events:
            request.cache.clear()
        logger.info("Executed %s (modified=%s, error=%s)", name, outcome.modified_events, outcome.is_error)
        return outcome
