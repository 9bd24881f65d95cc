"""Model completion service contract and the OpenAI streaming implementation.

A model turn is consumed as an async stream: zero or more :class:`TextDelta`
items forwarded as they arrive, then exactly one :class:`ModelTurn` holding
the full text and any tool invocations.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Literal, Optional, Protocol, Union

import orjson
from openai import APIConnectionError, APIError, AsyncOpenAI, AuthenticationError, PermissionDeniedError

from ..config import LlmSettings
from ..domain import ToolInvocation

logger = logging.getLogger(__name__)

ToolChoice = Literal["auto", "required"]


class ModelServiceError(Exception):
    """The completion service failed. Fatal for the current request."""

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind  # "auth", "connection" or "api"
        self.message = message


@dataclass(frozen=True)
class TextDelta:
    content: str


@dataclass(frozen=True)
class ModelTurn:
    text: str = ""
    tool_calls: List[ToolInvocation] = field(default_factory=list)
    finish_reason: Optional[str] = None

    def as_message(self) -> Dict[str, Any]:
        """The assistant message in chat-completions format."""

        message: Dict[str, Any] = {"role": "assistant", "content": self.text or None}
        if self.tool_calls:
            message["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {"name": call.name, "arguments": orjson.dumps(call.arguments).decode()},
                }
                for call in self.tool_calls
            ]
        return message


ModelEvent = Union[TextDelta, ModelTurn]


class ChatModel(Protocol):
    def stream(
        self,
        *,
        system: str,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        tool_choice: ToolChoice = "auto",
    ) -> AsyncIterator[ModelEvent]: ...


def _safe_json(raw: Any) -> Dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = orjson.loads(raw)
        return parsed if isinstance(parsed, dict) else {}
    except orjson.JSONDecodeError:
        logger.warning("Discarding malformed tool arguments: %.200s", raw)
        return {}


@dataclass
class _PendingCall:
    id: str = ""
    name: str = ""
    arguments: List[str] = field(default_factory=list)


class OpenAIChatModel:
    """Streaming chat completions with function tools."""

    def __init__(self, settings: LlmSettings, client: Optional[AsyncOpenAI] = None) -> None:
        self.settings = settings
        self._client = client or self._build_client()

    def _build_client(self) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=self.settings.api_key,
            base_url=self.settings.base_url,
            organization=self.settings.organization,
            project=self.settings.project,
        )

    async def stream(
        self,
        *,
        system: str,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        tool_choice: ToolChoice = "auto",
    ) -> AsyncIterator[ModelEvent]:
        text_parts: List[str] = []
        pending: Dict[int, _PendingCall] = {}
        finish_reason: Optional[str] = None

        try:
            stream = await self._client.chat.completions.create(
                model=self.settings.model,
                temperature=self.settings.temperature,
                max_tokens=self.settings.max_tokens,
                messages=[{"role": "system", "content": system}, *messages],
                tools=tools,
                tool_choice=tool_choice,
                stream=True,
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                choice = chunk.choices[0]
                delta = choice.delta
                if delta.content:
                    text_parts.append(delta.content)
                    yield TextDelta(delta.content)
                for call_delta in delta.tool_calls or []:
                    call = pending.setdefault(call_delta.index, _PendingCall())
                    if call_delta.id:
                        call.id = call_delta.id
                    if call_delta.function is not None:
                        if call_delta.function.name:
                            call.name += call_delta.function.name
                        if call_delta.function.arguments:
                            call.arguments.append(call_delta.function.arguments)
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
        except (AuthenticationError, PermissionDeniedError) as exc:
            raise ModelServiceError("auth", f"Model service rejected the credentials: {exc}") from exc
        except APIConnectionError as exc:
            raise ModelServiceError("connection", f"Could not reach the model service: {exc}") from exc
        except APIError as exc:
            raise ModelServiceError("api", f"Model service error: {exc}") from exc

        tool_calls = [
            ToolInvocation(id=call.id or f"call_{index}", name=call.name, arguments=_safe_json("".join(call.arguments)))
            for index, call in sorted(pending.items())
            if call.name
        ]
        yield ModelTurn(text="".join(text_parts), tool_calls=tool_calls, finish_reason=finish_reason)
