from __future__ import annotations

from datetime import datetime

from cadence.domain import ChatMessage, ConversationTurn
from cadence.orchestrator import ModelServiceError, ToolExecutor
from cadence.services.calendar import CalendarAuthError, CalendarUnavailableError

from conftest import NOW, TOKEN, UTC, ScriptedModel, call, collect, reply, seed_event, tools


def turn(message: str, *history: ChatMessage) -> ConversationTurn:
    return ConversationTurn(message=message, history=tuple(history))


def of_type(events, kind):
    return [event for event in events if event["type"] == kind]


def tool_messages(model_call):
    return [message for message in model_call["messages"] if message["role"] == "tool"]


async def run(orchestrator, message: str, *history: ChatMessage):
    return await collect(orchestrator.stream(turn(message, *history), TOKEN, now=NOW))


async def test_schedule_next_monday_end_to_end(store, make_orchestrator):
    model = ScriptedModel(
        [
            tools(call("resolve_date", query="next Monday at 3pm")),
            tools(
                call(
                    "create_event",
                    title="Coffee with Mike",
                    start_time="2026-01-12T15:00:00",
                    end_time="2026-01-12T15:30:00",
                )
            ),
            reply("Done! Coffee with Mike is on Monday, January 12 at 3:00 PM."),
        ]
    )

    events = await run(make_orchestrator(model), "Schedule coffee with Mike next Monday at 3pm")

    assert model.calls[0]["tool_choice"] == "required"
    assert model.calls[1]["tool_choice"] == "auto"
    assert "<current_datetime>" in model.calls[0]["system"]
    assert "ISO: 2026-01-07" in model.calls[0]["system"]

    resolved = tool_messages(model.calls[1])[0]["content"]
    assert resolved.startswith("2026-01-12 is a Monday")
    created = tool_messages(model.calls[2])[-1]["content"]
    assert created.startswith('✅ Event created: "Coffee with Mike"')

    assert [event["message"] for event in of_type(events, "status")] == [
        "Working out the date...",
        "Creating the event...",
    ]
    text = "".join(event["content"] for event in of_type(events, "text_delta"))
    assert text == "Done! Coffee with Mike is on Monday, January 12 at 3:00 PM."
    assert events[-1] == {"type": "done", "metadata": {"modifiedEvents": True}}

    stored = await store.list_events(TOKEN, datetime(2026, 1, 12, tzinfo=UTC), datetime(2026, 1, 13, tzinfo=UTC))
    assert [event.title for event in stored] == ["Coffee with Mike"]


async def test_assistant_and_tool_messages_are_paired(make_orchestrator):
    model = ScriptedModel(
        [
            tools(call("resolve_date", "c1", query="next Monday"), call("resolve_date", "c2", query="next Friday")),
            reply("Monday is the 12th and Friday is the 16th."),
        ]
    )

    await run(make_orchestrator(model), "When is next Monday?")

    messages = model.calls[1]["messages"]
    assistant = messages[-3]
    assert assistant["role"] == "assistant"
    assert [item["id"] for item in assistant["tool_calls"]] == ["c1", "c2"]
    assert [item["tool_call_id"] for item in messages[-2:]] == ["c1", "c2"]


async def test_rejected_inversion_never_reaches_store(store, make_orchestrator):
    model = ScriptedModel(
        [
            tools(
                call(
                    "create_event",
                    title="Sync",
                    start_time="2026-01-12T15:00:00",
                    end_time="2026-01-12T14:00:00",
                )
            ),
            reply("Sorry, those times look wrong."),
            reply("I could not create it."),
        ]
    )

    events = await run(make_orchestrator(model), "Book a sync")

    rejection = tool_messages(model.calls[1])[0]["content"]
    assert rejection.startswith("ERROR: INVALID TIME RANGE")
    assert "2026-01-12T15:00:00" in rejection
    assert "2026-01-12T14:00:00" in rejection
    assert await store.list_events(TOKEN, datetime(2026, 1, 1, tzinfo=UTC), datetime(2026, 2, 1, tzinfo=UTC)) == []
    assert events[-1]["metadata"]["modifiedEvents"] is False


async def test_failed_validation_does_not_block_rest_of_batch(make_orchestrator):
    model = ScriptedModel(
        [
            tools(
                call("list_events", "bad", start_date="next week"),
                call("resolve_date", "good", query="next week"),
            ),
            reply("Here is next week."),
        ]
    )

    await run(make_orchestrator(model), "Show me next week")

    results = tool_messages(model.calls[1])
    assert [item["tool_call_id"] for item in results] == ["bad", "good"]
    assert results[0]["content"].startswith("ERROR:")
    assert "resolve_date" in results[0]["content"]
    assert results[1]["content"].startswith("Next week (business days):")


async def test_stale_id_delete_reports_not_found(make_orchestrator):
    model = ScriptedModel(
        [
            tools(call("delete_event", event_id="already-deleted-id")),
            reply("I couldn't find that meeting anymore."),
        ]
    )

    events = await run(make_orchestrator(model), "Delete the already-deleted meeting")

    result = tool_messages(model.calls[1])[0]["content"]
    assert "Event not found: already-deleted-id" in result
    assert len(model.calls) == 2
    assert events[-1] == {"type": "done", "metadata": {"modifiedEvents": False}}


async def test_unverified_weekday_is_retried_after_false_claim(store, make_orchestrator):
    model = ScriptedModel(
        [
            tools(
                call(
                    "create_event",
                    title="Coffee",
                    start_time="2026-01-12T15:00:00",
                    end_time="2026-01-12T15:30:00",
                )
            ),
            reply("I've scheduled coffee for Monday."),
            tools(call("resolve_date", query="next Monday")),
            tools(
                call(
                    "create_event",
                    "retry",
                    title="Coffee",
                    start_time="2026-01-12T15:00:00",
                    end_time="2026-01-12T15:30:00",
                )
            ),
            reply("Coffee is booked for Monday, January 12 at 3:00 PM."),
        ]
    )

    events = await run(make_orchestrator(model), "Schedule coffee next Monday at 3pm")

    assert tool_messages(model.calls[1])[0]["content"].startswith("ERROR: CRITICAL ERROR")
    retry_call = model.calls[2]
    assert retry_call["tool_choice"] == "required"
    corrective = retry_call["messages"][-1]
    assert corrective["role"] == "system"
    assert "did NOT call create_event" in corrective["content"]
    assert "claim was false" in corrective["content"]
    assert any(event["type"] == "status" and "actually applied" in event["message"] for event in events)
    assert events[-1]["metadata"]["modifiedEvents"] is True
    assert len(await store.list_events(TOKEN, datetime(2026, 1, 12, tzinfo=UTC), datetime(2026, 1, 13, tzinfo=UTC))) == 1


async def test_completion_retry_is_bounded(make_orchestrator):
    model = ScriptedModel([reply("I've moved it."), reply("I've really moved it."), reply("unreachable")])

    events = await run(make_orchestrator(model), "Move my standup to 10am")

    assert len(model.calls) == 2
    assert events[-1] == {"type": "done", "metadata": {"modifiedEvents": False}}


async def test_retry_quotes_ids_from_listing(store, make_orchestrator):
    event = await seed_event(store, "Standup", datetime(2026, 1, 8, 9, tzinfo=UTC), 15)
    model = ScriptedModel(
        [
            tools(call("list_events", start_date="2026-01-08", end_date="2026-01-08")),
            reply("I've moved your standup."),
            tools(call("update_event", event_id=event.id, start_time="2026-01-08T10:00:00", end_time="2026-01-08T10:15:00")),
            reply("Standup now starts at 10:00 AM."),
        ]
    )

    events = await run(make_orchestrator(model), "Move tomorrow's standup to 10am")

    corrective = model.calls[2]["messages"][-1]["content"]
    assert f'update_event(event_id="{event.id}"' in corrective
    assert events[-1]["metadata"]["modifiedEvents"] is True
    assert (await store.get_event(TOKEN, event.id)).start.date_time == datetime(2026, 1, 8, 10, tzinfo=UTC)


async def test_chit_chat_needs_no_tools(make_orchestrator):
    model = ScriptedModel([reply("Hi! How can I help with your calendar?")])

    events = await run(make_orchestrator(model), "hello", ChatMessage("assistant", "Welcome back."))

    assert model.calls[0]["tool_choice"] == "auto"
    assert model.calls[0]["messages"][0] == {"role": "assistant", "content": "Welcome back."}
    assert [event["type"] for event in events][-1] == "done"


async def test_model_auth_failure_ends_stream_without_done(make_orchestrator):
    model = ScriptedModel([ModelServiceError("auth", "invalid api key")])

    events = await run(make_orchestrator(model), "What's on today?")

    assert events == [{"type": "error", "message": "invalid api key", "code": "model_auth"}]


async def test_model_connection_failure_is_unavailable(make_orchestrator):
    model = ScriptedModel([ModelServiceError("connection", "timed out")])

    events = await run(make_orchestrator(model), "What's on today?")

    assert events[-1]["code"] == "model_unavailable"


class _FailingBackend:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc

    async def list_events(self, token, start, end, *, max_results=None):
        raise self.exc


async def test_calendar_auth_failure_is_fatal(make_orchestrator):
    model = ScriptedModel([tools(call("list_events", start_date="2026-01-07")), reply("unreachable")])
    orchestrator = make_orchestrator(model, executor=ToolExecutor(_FailingBackend(CalendarAuthError("expired"))))

    events = await run(orchestrator, "What's on today?")

    assert events[-1]["code"] == "calendar_auth"
    assert not of_type(events, "done")
    assert len(model.calls) == 1


async def test_calendar_outage_is_fatal(make_orchestrator):
    model = ScriptedModel([tools(call("list_events", start_date="2026-01-07"))])
    orchestrator = make_orchestrator(model, executor=ToolExecutor(_FailingBackend(CalendarUnavailableError("503"))))

    events = await run(orchestrator, "What's on today?")

    assert events[-1]["code"] == "calendar_unavailable"


async def test_runaway_tool_loop_hits_step_limit(make_orchestrator):
    model = ScriptedModel([tools(call("resolve_date", query="today"))], repeat_last=True)

    events = await run(make_orchestrator(model, max_graph_steps=10), "What's today?")

    assert events[-1]["type"] == "error"
    assert events[-1]["code"] == "step_limit"
