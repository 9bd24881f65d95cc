"""Domain models for calendar chat."""

from __future__ import annotations

from .enums import ActionKind, EventStatus, ResponseStatus
from .models import (
    Attendee,
    AttendeeFrequency,
    CalendarEvent,
    CalendarStats,
    ChatMessage,
    ConversationTurn,
    EventDraft,
    EventPatch,
    EventTime,
    ToolInvocation,
)

__all__ = [
    "ActionKind",
    "Attendee",
    "AttendeeFrequency",
    "CalendarEvent",
    "CalendarStats",
    "ChatMessage",
    "ConversationTurn",
    "EventDraft",
    "EventPatch",
    "EventStatus",
    "EventTime",
    "ResponseStatus",
    "ToolInvocation",
]
