"""Gatekeeping for tool arguments before anything reaches the calendar.

A rejection is not an exception: it becomes an ``is_error`` tool result so
the model can read the reason and try again within the same request.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional

from .context import RequestContext
from .tools import ToolSpec, get_tool

logger = logging.getLogger(__name__)

ISO_DATETIME = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}$")
ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
RELATIVE_DATE = re.compile(
    r"\b(next|this|last|upcoming|coming|week|monday|tuesday|wednesday|thursday|friday|saturday|sunday"
    r"|tomorrow|yesterday)\b",
    re.IGNORECASE,
)
WEEKDAY_MENTION = re.compile(r"\b(monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b", re.IGNORECASE)

SHORT_EVENT_MINUTES = 5
LONG_EVENT_MINUTES = 8 * 60

_JSON_TYPES = {
    "string": str,
    "array": list,
    "object": dict,
    "boolean": bool,
    "integer": int,
    "number": (int, float),
}


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    error: Optional[str] = None

    @classmethod
    def passed(cls) -> "ValidationResult":
        return cls(True)

    @classmethod
    def rejected(cls, error: str) -> "ValidationResult":
        return cls(False, error)


def _check_schema(spec: ToolSpec, arguments: Mapping[str, Any]) -> Optional[str]:
    schema = spec.parameter_schema
    properties = schema["properties"]
    missing = [name for name in schema["required"] if arguments.get(name) in (None, "")]
    if missing:
        return f"{spec.name} requires: {', '.join(missing)}. Missing or empty: {', '.join(missing)}."
    for name, value in arguments.items():
        prop = properties.get(name)
        if prop is None or value is None:
            continue
        expected = _JSON_TYPES.get(prop.get("type", "string"), str)
        if not isinstance(value, expected) or (prop.get("type") in ("integer", "number") and isinstance(value, bool)):
            return f"{spec.name}: argument '{name}' must be of type {prop.get('type')}. Got: {value!r}"
        if prop.get("type") == "array" and prop.get("items", {}).get("type") == "string":
            if not all(isinstance(item, str) and item.strip() for item in value):
                return f"{spec.name}: argument '{name}' must be a list of non-empty strings. Got: {value!r}"
        if "enum" in prop and value not in prop["enum"]:
            return f"{spec.name}: argument '{name}' must be one of {', '.join(prop['enum'])}. Got: {value!r}"
    return None


def _check_relative_dates(spec: ToolSpec, arguments: Mapping[str, Any]) -> Optional[str]:
    for name in ("start_date", "end_date"):
        value = arguments.get(name)
        if not value:
            continue
        if RELATIVE_DATE.search(str(value)):
            return (
                f'{spec.name} cannot take relative date terms like "next week", "this week" or "Monday". '
                f"Got {name}={value!r}.\n\n"
                'REQUIRED: first call resolve_date with the relative phrase (e.g. "next week", "this Monday") '
                f"to get exact ISO dates, THEN call {spec.name} with those exact dates."
            )
        if not (ISO_DATE.match(str(value)) or ISO_DATETIME.match(str(value))):
            return f"{name} must be YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS. Got: {value}"
    return None


def _parse_instant(name: str, value: Any) -> tuple[Optional[datetime], Optional[str]]:
    if not ISO_DATETIME.match(str(value)):
        return None, (
            f"{name} must be in ISO format (YYYY-MM-DDTHH:MM:SS) with no timezone suffix. Got: {value}. "
            "Use resolve_date to get the correct date."
        )
    try:
        return datetime.fromisoformat(str(value)), None
    except ValueError:
        return None, f"{name} is not a real calendar instant. Got: {value}"


def _check_time_range(spec: ToolSpec, arguments: Mapping[str, Any]) -> Optional[str]:
    instants: dict[str, datetime] = {}
    for name in ("start_time", "end_time"):
        value = arguments.get(name)
        if value is None:
            continue
        parsed, error = _parse_instant(name, value)
        if error:
            return error
        assert parsed is not None
        instants[name] = parsed

    start, end = instants.get("start_time"), instants.get("end_time")
    if start is None or end is None:
        return None
    if end <= start:
        return (
            f"INVALID TIME RANGE: end_time ({arguments['end_time']}) must be AFTER start_time "
            f"({arguments['start_time']}). An event cannot end before or at the same time it starts. "
            "Fix the times and call the tool again."
        )
    minutes = (end - start).total_seconds() / 60
    if minutes < SHORT_EVENT_MINUTES:
        logger.warning("%s: very short duration (%.0f minutes)", spec.name, minutes)
    elif minutes > LONG_EVENT_MINUTES:
        logger.warning("%s: very long duration (%.1f hours)", spec.name, minutes / 60)
    return None


def _check_verified_weekday(arguments: Mapping[str, Any], context: RequestContext) -> Optional[str]:
    mentioned = {match.lower() for match in WEEKDAY_MENTION.findall(context.user_message)}
    if not mentioned:
        return None
    iso_date = str(arguments.get("start_time", ""))[:10]
    record = context.ledger.get(iso_date)
    if record is None:
        return (
            f"CRITICAL ERROR: You are trying to create an event on {iso_date}, but you have NOT verified "
            "what day of the week this date is.\n\n"
            f'The user said: "{context.user_message}"\n\n'
            "REQUIRED STEPS:\n"
            f'1. Call resolve_date with the day the user named (e.g. "{_weekday_phrase(context.user_message)}") '
            "to find the exact ISO date\n"
            "2. Use the EXACT date returned by that tool\n"
            "3. Do NOT guess or calculate dates yourself"
        )
    # Only a date resolved from a weekday phrase must agree with the weekday the
    # user named; "tomorrow" can sit beside an unrelated "Monday" question.
    if WEEKDAY_MENTION.search(record.query) and record.weekday.lower() not in mentioned:
        return (
            f"DATE MISMATCH: {iso_date} is a {record.weekday}, but the user asked for "
            f"{' or '.join(sorted(name.capitalize() for name in mentioned))}.\n\n"
            f'The user said: "{context.user_message}"\n\n'
            "Call resolve_date for the day the user named and use the date it returns."
        )
    return None


def _weekday_phrase(message: str) -> str:
    match = re.search(
        r"\b((?:this|next|coming|upcoming|last)\s+)?(monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b",
        message,
        re.IGNORECASE,
    )
    return match.group(0) if match else message


def validate_tool_call(name: str, arguments: Mapping[str, Any], context: RequestContext) -> ValidationResult:
    """Check one invocation against format, ordering and verification rules.

    Unknown tools pass through untouched; the executor answers them.
    """

    spec = get_tool(name)
    if spec is None:
        return ValidationResult.passed()

    for check in (
        lambda: _check_schema(spec, arguments),
        lambda: _check_relative_dates(spec, arguments),
        lambda: _check_time_range(spec, arguments),
    ):
        error = check()
        if error:
            return ValidationResult.rejected(error)

    if name == "create_event":
        error = _check_verified_weekday(arguments, context)
        if error:
            return ValidationResult.rejected(error)

    return ValidationResult.passed()
