from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Sequence, Union
from zoneinfo import ZoneInfo

import pytest

from cadence.core.calendar_store import CalendarStore
from cadence.domain import EventDraft, ToolInvocation
from cadence.orchestrator import ChatOrchestrator, RequestContext, ToolExecutor
from cadence.orchestrator.model import ModelTurn, TextDelta

UTC = ZoneInfo("UTC")
# Wednesday morning; "next Monday" is 2026-01-12.
NOW = datetime(2026, 1, 7, 9, 0, tzinfo=UTC)
TOKEN = "token-1"

Step = Union[ModelTurn, Exception, Callable[[List[Dict[str, Any]]], ModelTurn]]


def call(name: str, call_id: Optional[str] = None, **arguments: Any) -> ToolInvocation:
    return ToolInvocation(id=call_id or f"call_{name}", name=name, arguments=arguments)


def tools(*calls: ToolInvocation, text: str = "") -> ModelTurn:
    return ModelTurn(text=text, tool_calls=list(calls), finish_reason="tool_calls")


def reply(text: str) -> ModelTurn:
    return ModelTurn(text=text, finish_reason="stop")


class ScriptedModel:
    """Plays back pre-recorded model turns and records what it was asked."""

    def __init__(self, steps: Sequence[Step], *, repeat_last: bool = False) -> None:
        self.steps = list(steps)
        self.repeat_last = repeat_last
        self.calls: List[Dict[str, Any]] = []

    def _next(self, messages: List[Dict[str, Any]]) -> Union[ModelTurn, Exception]:
        index = len(self.calls) - 1
        if index >= len(self.steps):
            if self.repeat_last and self.steps:
                index = len(self.steps) - 1
            else:
                return reply("")
        step = self.steps[index]
        if callable(step) and not isinstance(step, ModelTurn):
            return step(messages)
        return step

    async def stream(
        self,
        *,
        system: str,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        tool_choice: str = "auto",
    ) -> AsyncIterator[Union[TextDelta, ModelTurn]]:
        self.calls.append(
            {"system": system, "messages": [dict(item) for item in messages], "tool_choice": tool_choice}
        )
        step = self._next(messages)
        if isinstance(step, Exception):
            raise step
        for index, word in enumerate(step.text.split(" ")):
            if word:
                yield TextDelta(word if index == 0 else f" {word}")
        yield step


class TrackingStore(CalendarStore):
    """Local store that remembers whether it was closed."""

    closed = False

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def store(tmp_path) -> CalendarStore:
    return CalendarStore(tmp_path / "calendar.json", time_zone="UTC", clock=lambda: NOW)


@pytest.fixture
def executor(store: CalendarStore) -> ToolExecutor:
    return ToolExecutor(store)


@pytest.fixture
def make_request() -> Callable[..., RequestContext]:
    def factory(message: str = "", *, now: datetime = NOW) -> RequestContext:
        return RequestContext.create(access_token=TOKEN, user_message=message, time_zone="UTC", now=now)

    return factory


@pytest.fixture
def make_orchestrator(executor: ToolExecutor) -> Callable[..., ChatOrchestrator]:
    def factory(model: ScriptedModel, **kwargs: Any) -> ChatOrchestrator:
        return ChatOrchestrator(model, kwargs.pop("executor", executor), time_zone="UTC", **kwargs)

    return factory


async def seed_event(
    store: CalendarStore,
    title: str,
    start: datetime,
    minutes: int = 60,
    *,
    attendees: Sequence[str] = (),
    token: str = TOKEN,
):
    draft = EventDraft(
        title=title,
        start=start,
        end=start + timedelta(minutes=minutes),
        time_zone="UTC",
        attendees=tuple(attendees),
    )
    return await store.create_event(token, draft)


async def collect(stream: AsyncIterator[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [event async for event in stream]
