from __future__ import annotations

import pytest

import cadence.orchestrator  # noqa: F401  registers the calendar tools
from cadence.orchestrator.tools import (
    REGISTRY,
    get_tool,
    get_tools,
    mutating_tool_names,
    register_tool,
    tool_catalog,
)


def test_catalog_has_every_calendar_tool():
    assert {spec.name for spec in get_tools()} == {
        "resolve_date",
        "list_events",
        "check_availability",
        "get_stats",
        "draft_email",
        "create_event",
        "update_event",
        "delete_event",
        "add_attendee",
        "remove_attendee",
    }


def test_mutating_tools_are_flagged():
    assert mutating_tool_names() == {
        "create_event",
        "update_event",
        "delete_event",
        "add_attendee",
        "remove_attendee",
    }


def test_create_event_schema():
    schema = get_tool("create_event").parameter_schema

    assert schema["required"] == ["title", "start_time", "end_time"]
    assert schema["properties"]["attendees"] == {
        "type": "array",
        "items": {"type": "string"},
        "description": schema["properties"]["attendees"]["description"],
    }
    assert schema["properties"]["start_time"]["type"] == "string"


def test_optional_enum_is_exposed():
    tone = get_tool("draft_email").parameter_schema["properties"]["tone"]

    assert tone["enum"] == ["formal", "casual", "friendly"]
    assert "tone" not in get_tool("draft_email").required


def test_context_parameter_is_hidden_from_schema():
    stats = get_tool("get_stats")

    assert stats.parameter_schema == {"type": "object", "properties": {}, "required": []}
    assert stats.parameter_names == frozenset()


def test_catalog_uses_function_tool_format():
    entry = next(item for item in tool_catalog() if item["function"]["name"] == "delete_event")

    assert entry["type"] == "function"
    assert entry["function"]["parameters"]["required"] == ["event_id"]
    assert entry["function"]["description"]


def test_duplicate_registration_is_rejected():
    async def handler(ctx, query: str):
        return query

    register_tool("echo_for_test", description="Echo")(handler)
    try:
        with pytest.raises(ValueError):
            register_tool("echo_for_test", description="Echo again")(handler)
    finally:
        REGISTRY.pop("echo_for_test", None)
