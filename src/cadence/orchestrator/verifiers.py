from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Optional, Pattern, Sequence, Tuple

from ..domain import ActionKind

_CALENDAR_TARGET = r"(?:my|the|your|our)\s+(?:calendar|schedule|agenda)\b"
_EVENT_TARGET = rf"(?!{_CALENDAR_TARGET})(?:my|the|our|your|this|that|tomorrow's|today's)\s+\w"
_EMAIL = r"[\w.+-]+@[\w-]+\.[\w.-]+"

# Checked in order. "remove bob from the standup" is an attendee change, while
# "remove the standup from my calendar" and a bare "remove the standup" delete.
ACTION_RULES: Tuple[Tuple[ActionKind, Pattern[str]], ...] = (
    (
        ActionKind.DELETE,
        re.compile(
            rf"\b(cancel|delete|clear|drop)\b|\bremove\b(?!.*(?:\bfrom\s+{_EVENT_TARGET}|{_EMAIL}))",
            re.IGNORECASE,
        ),
    ),
    (
        ActionKind.UPDATE,
        re.compile(
            r"\b(move|push|shift|delay|change|update|reschedule|modify|adjust|extend|shorten)\b",
            re.IGNORECASE,
        ),
    ),
    (
        ActionKind.ATTENDEES,
        re.compile(
            rf"\b(invite|uninvite)\b|\b(add|remove)\b.*{_EMAIL}"
            rf"|\badd\b.*\bto\s+{_EVENT_TARGET}|\bremove\b.*\bfrom\s+{_EVENT_TARGET}",
            re.IGNORECASE,
        ),
    ),
    (ActionKind.CREATE, re.compile(r"\b(schedule|book|create|add|set up|make|plan)\b", re.IGNORECASE)),
    (ActionKind.READ, re.compile(r"\b(show|list|what|when|get|find|check|view|see)\b", re.IGNORECASE)),
)

_REMOVAL = re.compile(r"\b(remove|uninvite)\b", re.IGNORECASE)
_EVENT_ID_MARKER = re.compile(r"\[ID: ([^\]]+)\]")
_CLAIM_PATTERNS = (
    re.compile(r"\bI'?ve (moved|updated|changed|rescheduled|cancell?ed|deleted|created|scheduled|added|removed|invited)\b", re.IGNORECASE),
    re.compile(r"\bI have (moved|updated|changed|rescheduled|cancell?ed|deleted|created|scheduled|added|removed|invited)\b", re.IGNORECASE),
    re.compile(r"\bSuccessfully (moved|updated|changed|rescheduled|cancell?ed|deleted|created|scheduled|added|removed)\b", re.IGNORECASE),
    re.compile(r"\bThe (meeting|event) has been (moved|updated|changed|rescheduled|cancell?ed|deleted|created|scheduled)\b", re.IGNORECASE),
)
_CALENDAR_KEYWORDS = re.compile(
    r"\b(calendar|event|events|meeting|meetings|appointment|schedule|scheduled|busy|free|available|availability"
    r"|today|tomorrow|yesterday|tonight|week|weekend|monday|tuesday|wednesday|thursday|friday|saturday|sunday"
    r"|next|agenda|stats|statistics)\b",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class CompletionCheck:
    valid: bool
    error: Optional[str] = None

    @classmethod
    def ok(cls) -> "CompletionCheck":
        return cls(True)


def detect_action(message: str) -> ActionKind:
    for kind, pattern in ACTION_RULES:
        if pattern.search(message):
            return kind
    return ActionKind.NONE


def needs_tool_call(message: str) -> bool:
    """True when the first model turn must call a tool instead of answering from memory."""

    return bool(_CALENDAR_KEYWORDS.search(message)) or detect_action(message) is not ActionKind.NONE


def detect_false_completion(text: str) -> bool:
    return any(pattern.search(text or "") for pattern in _CLAIM_PATTERNS)


def extract_event_ids(text: Optional[str]) -> list[str]:
    if not text:
        return []
    seen: list[str] = []
    for event_id in _EVENT_ID_MARKER.findall(text):
        if event_id not in seen:
            seen.append(event_id)
    return seen


def _update_error(tools_called: Sequence[str], last_tool_result: Optional[str]) -> str:
    ids = extract_event_ids(last_tool_result)
    if not ids or "list_events" not in tools_called:
        return (
            "CRITICAL ERROR: The user asked to UPDATE calendar events, but you did NOT call update_event.\n\n"
            "TWO-STEP PROCESS REQUIRED:\n"
            "STEP 1: Call list_events to fetch the events and get their IDs\n"
            "STEP 2: For EACH event, call update_event with the REAL event ID\n\n"
            "DO NOT:\n"
            '- Make up event IDs like "event_001"\n'
            "- Skip list_events\n"
            "- Say you updated without actually calling the tools"
        )
    templates = "\n".join(
        f'- Event ID: "{event_id}" -> call update_event(event_id="{event_id}", start_time="...", end_time="...")'
        for event_id in ids
    )
    return (
        "CRITICAL ERROR: The user asked to UPDATE calendar events, but you did NOT call update_event.\n\n"
        "EVENTS YOU NEED TO UPDATE (USE THESE EXACT IDs):\n"
        f"{templates}\n\n"
        "DO NOT MAKE UP EVENT IDs. Call update_event now with the exact IDs shown above."
    )


def _missing(required: Iterable[str], tools_called: Sequence[str]) -> list[str]:
    return [name for name in required if name not in tools_called]


def validate_action_completed(
    action: ActionKind,
    tools_called: Sequence[str],
    user_message: str = "",
    last_tool_result: Optional[str] = None,
) -> CompletionCheck:
    """Check that the tools a mutating request needs were actually called this turn."""

    if not action.is_mutation:
        return CompletionCheck.ok()

    if action is ActionKind.UPDATE:
        if "update_event" not in tools_called:
            return CompletionCheck(False, _update_error(tools_called, last_tool_result))
        if "list_events" not in tools_called:
            return CompletionCheck(
                False,
                "You called update_event without first calling list_events. Event IDs must come from a "
                "list_events result; call list_events, confirm the ID, then update again if needed.",
            )
        return CompletionCheck.ok()

    if action is ActionKind.DELETE:
        if "delete_event" not in tools_called:
            return CompletionCheck(
                False,
                "The user asked to DELETE/CANCEL a calendar event, but you did NOT call delete_event. "
                "You MUST actually delete the event, not just say you did it.",
            )
        return CompletionCheck.ok()

    if action is ActionKind.CREATE:
        if "create_event" not in tools_called:
            return CompletionCheck(
                False,
                "The user asked to CREATE/SCHEDULE a calendar event, but you did NOT call create_event. "
                "You MUST actually create the event, not just say you did it.",
            )
        return CompletionCheck.ok()

    attendee_tool = "remove_attendee" if _REMOVAL.search(user_message) else "add_attendee"
    missing = _missing(("list_events", attendee_tool), tools_called)
    if missing:
        return CompletionCheck(
            False,
            f"The user asked to change who attends an event, but you did NOT call {' and '.join(missing)}. "
            f"Call list_events to find the event ID, then call {attendee_tool} with that exact ID.",
        )
    return CompletionCheck.ok()


def corrective_instruction(check: CompletionCheck, response_text: str) -> str:
    """Wrap a failed check into the system message shown on the retry turn."""

    message = check.error or "The requested calendar action was not completed."
    if detect_false_completion(response_text):
        message += (
            "\n\nYour previous reply claimed the action was done, but no matching tool call happened. "
            "That claim was false. Do not repeat it; call the tool."
        )
    return message
