from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Dict, List, Optional, TypedDict

from langgraph.errors import GraphRecursionError
from langgraph.graph import END, StateGraph
from langgraph.types import StreamWriter

from ..config import AppSettings
from ..domain import ActionKind, ConversationTurn, ToolInvocation
from ..services.calendar import CalendarAuthError, CalendarBackend, CalendarUnavailableError
from . import events
from .context import RequestContext
from .executor import ToolExecutor, ToolOutcome
from .model import ChatModel, ModelServiceError, ModelTurn, TextDelta
from .prompts import build_system_prompt
from .tools import tool_catalog
from .validation import validate_tool_call
from .verifiers import corrective_instruction, detect_action, needs_tool_call, validate_action_completed

logger = logging.getLogger(__name__)


class ChatState(TypedDict, total=False):
    messages: List[Dict[str, Any]]
    pending_calls: List[ToolInvocation]
    tools_called: List[str]
    last_text: str
    last_tool_result: Optional[str]
    modified: bool
    retries: int
    force_tool: bool
    retry: bool


class _Turn:
    """Graph nodes bound to one request's context and action classification."""

    def __init__(self, orchestrator: "ChatOrchestrator", request: RequestContext, action: ActionKind) -> None:
        self.orchestrator = orchestrator
        self.request = request
        self.action = action
        self.system = build_system_prompt(request.now, request.tz)

    async def await_model(self, state: ChatState, writer: StreamWriter) -> ChatState:
        tool_choice = "required" if state.get("force_tool") else "auto"
        turn: Optional[ModelTurn] = None
        async for item in self.orchestrator.model.stream(
            system=self.system,
            messages=state["messages"],
            tools=self.orchestrator.tools,
            tool_choice=tool_choice,
        ):
            if isinstance(item, TextDelta):
                writer(events.text_delta(item.content))
            else:
                turn = item
        turn = turn or ModelTurn()

        messages = list(state["messages"])
        if turn.text or turn.tool_calls:
            messages.append(turn.as_message())
        return {
            "messages": messages,
            "pending_calls": list(turn.tool_calls),
            "last_text": turn.text,
            "force_tool": False,
        }

    async def execute_tools(self, state: ChatState, writer: StreamWriter) -> ChatState:
        calls = state.get("pending_calls") or []
        logger.info("Model requested tools: %s", ", ".join(call.name for call in calls))
        messages = list(state["messages"])
        tools_called = list(state.get("tools_called") or [])
        modified = bool(state.get("modified"))
        last_result = state.get("last_tool_result")

        # Sequential and in request order; later calls may depend on earlier side effects.
        for call in calls:
            writer(events.status_for_tool(call.name))
            check = validate_tool_call(call.name, call.arguments, self.request)
            if check.ok:
                outcome = await self.orchestrator.executor.execute(call.name, call.arguments, self.request)
                tools_called.append(call.name)
            else:
                logger.info("Rejected %s: %s", call.name, (check.error or "").splitlines()[0])
                outcome = ToolOutcome(content=check.error or "Invalid tool call.", is_error=True)
            modified = modified or outcome.modified_events
            messages.append(
                {
                    "role": "tool",
                    "tool_call_id": call.id,
                    "content": f"ERROR: {outcome.content}" if outcome.is_error else outcome.content,
                }
            )
            last_result = outcome.content

        return {
            "messages": messages,
            "pending_calls": [],
            "tools_called": tools_called,
            "modified": modified,
            "last_tool_result": last_result,
        }

    async def verify_completion(self, state: ChatState, writer: StreamWriter) -> ChatState:
        check = validate_action_completed(
            self.action,
            state.get("tools_called") or [],
            self.request.user_message,
            state.get("last_tool_result"),
        )
        if check.valid:
            return {"retry": False}

        retries = state.get("retries", 0)
        if retries + 1 >= self.orchestrator.completion_attempts:
            logger.warning(
                "Model did not complete %s action after %d retries; ending turn", self.action.value, retries
            )
            return {"retry": False}

        logger.warning("Completion check failed for %s action (retry %d)", self.action.value, retries + 1)
        writer(events.status("Making sure the change is actually applied..."))
        instruction = corrective_instruction(check, state.get("last_text", ""))
        return {
            "messages": [*state["messages"], {"role": "system", "content": instruction}],
            "retries": retries + 1,
            "force_tool": True,
            "retry": True,
        }

    def build(self):
        graph = StateGraph(ChatState)
        graph.add_node("await_model", self.await_model)
        graph.add_node("execute_tools", self.execute_tools)
        graph.add_node("verify_completion", self.verify_completion)
        graph.set_entry_point("await_model")
        graph.add_conditional_edges(
            "await_model",
            _route_after_model,
            {"execute_tools": "execute_tools", "verify_completion": "verify_completion"},
        )
        graph.add_edge("execute_tools", "await_model")
        graph.add_conditional_edges("verify_completion", _route_after_verify, {"await_model": "await_model", END: END})
        return graph.compile()


def _route_after_model(state: ChatState) -> str:
    return "execute_tools" if state.get("pending_calls") else "verify_completion"


def _route_after_verify(state: ChatState) -> str:
    return "await_model" if state.get("retry") else END


class ChatOrchestrator:
    """Drives the model/tool loop for one chat message and streams its events."""

    def __init__(
        self,
        model: ChatModel,
        executor: ToolExecutor,
        *,
        time_zone: str = "UTC",
        completion_attempts: int = 2,
        max_graph_steps: int = 100,
        cache_ttl: timedelta = timedelta(seconds=60),
    ) -> None:
        self.model = model
        self.executor = executor
        self.time_zone = time_zone
        self.completion_attempts = max(completion_attempts, 1)
        self.max_graph_steps = max_graph_steps
        self.cache_ttl = cache_ttl
        self.tools = tool_catalog()

    @classmethod
    def from_settings(cls, settings: AppSettings, model: ChatModel, backend: CalendarBackend) -> "ChatOrchestrator":
        executor = ToolExecutor(
            backend,
            default_range_days=settings.calendar.default_range_days,
            max_results=settings.calendar.max_results,
        )
        return cls(
            model,
            executor,
            time_zone=settings.chat.timezone,
            completion_attempts=settings.chat.completion_attempts,
            max_graph_steps=settings.chat.max_graph_steps,
            cache_ttl=settings.chat.request_cache_ttl,
        )

    async def aclose(self) -> None:
        await self.executor.backend.aclose()

    async def stream(
        self,
        turn: ConversationTurn,
        access_token: str,
        *,
        now: Optional[datetime] = None,
    ) -> AsyncIterator[events.StreamEvent]:
        request = RequestContext.create(
            access_token=access_token,
            user_message=turn.message,
            time_zone=self.time_zone,
            now=now,
            cache_ttl=self.cache_ttl,
        )
        action = detect_action(turn.message)
        force_tool = needs_tool_call(turn.message)
        logger.info("Chat turn: action=%s force_tool=%s history=%d", action.value, force_tool, len(turn.history))

        graph = _Turn(self, request, action).build()
        state: ChatState = {
            "messages": turn.as_messages(),
            "pending_calls": [],
            "tools_called": [],
            "last_text": "",
            "last_tool_result": None,
            "modified": False,
            "retries": 0,
            "force_tool": force_tool,
            "retry": False,
        }
        final: ChatState = state

        try:
            async for mode, chunk in graph.astream(
                state,
                config={"recursion_limit": self.max_graph_steps},
                stream_mode=["custom", "values"],
            ):
                if mode == "custom":
                    yield chunk
                else:
                    final = chunk
        except GraphRecursionError:
            logger.error("Chat turn exceeded %d graph steps", self.max_graph_steps)
            yield events.error("The assistant took too many steps to answer. Please try again.", "step_limit")
            return
        except ModelServiceError as exc:
            logger.error("Model service failure (%s): %s", exc.kind, exc.message)
            code = "model_auth" if exc.kind == "auth" else "model_unavailable"
            yield events.error(exc.message, code)
            return
        except CalendarAuthError as exc:
            logger.error("Calendar rejected the access token: %s", exc)
            yield events.error("Your calendar session has expired. Please sign in again.", "calendar_auth")
            return
        except CalendarUnavailableError as exc:
            logger.error("Calendar unavailable: %s", exc)
            yield events.error(f"The calendar service is unavailable: {exc}", "calendar_unavailable")
            return
        except Exception as exc:  # noqa: BLE001
            logger.exception("Chat turn failed")
            yield events.error(f"Failed to process chat message: {exc}", "internal")
            return

        modified = bool(final.get("modified"))
        logger.info(
            "Chat turn done: tools=%s modified=%s retries=%d",
            ", ".join(final.get("tools_called") or []) or "none",
            modified,
            final.get("retries", 0),
        )
        yield events.done(modified)
