"""Records of the newline-delimited chat stream."""

from __future__ import annotations

from typing import Any, Dict, Optional

import orjson

StreamEvent = Dict[str, Any]


def text_delta(content: str) -> StreamEvent:
    return {"type": "text_delta", "content": content}


def status(message: str) -> StreamEvent:
    return {"type": "status", "message": message}


def error(message: str, code: Optional[str] = None) -> StreamEvent:
    event: StreamEvent = {"type": "error", "message": message}
    if code:
        event["code"] = code
    return event


def done(modified_events: bool) -> StreamEvent:
    return {"type": "done", "metadata": {"modifiedEvents": modified_events}}


STATUS_MESSAGES = {
    "resolve_date": "Working out the date...",
    "list_events": "Checking your calendar...",
    "check_availability": "Checking availability...",
    "get_stats": "Crunching calendar statistics...",
    "create_event": "Creating the event...",
    "update_event": "Updating the event...",
    "delete_event": "Deleting the event...",
    "add_attendee": "Adding the attendee...",
    "remove_attendee": "Removing the attendee...",
    "draft_email": "Preparing the email draft...",
}


def status_for_tool(name: str) -> StreamEvent:
    return status(STATUS_MESSAGES.get(name, f"Running {name}..."))


def encode(event: StreamEvent) -> bytes:
    return orjson.dumps(event) + b"\n"
