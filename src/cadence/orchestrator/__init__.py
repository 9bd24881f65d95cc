"""Tool-calling chat orchestration for Cadence."""

from __future__ import annotations

from .context import RequestContext
from .executor import ToolExecutor, ToolOutcome
from .langgraph import ChatOrchestrator
from .model import ChatModel, ModelServiceError, ModelTurn, OpenAIChatModel, TextDelta
from .temporal import VerificationLedger, resolve_date
from .tools import get_tools, tool_catalog
from .validation import ValidationResult, validate_tool_call
from .verifiers import CompletionCheck, detect_action, validate_action_completed

__all__ = [
    "ChatModel",
    "ChatOrchestrator",
    "CompletionCheck",
    "ModelServiceError",
    "ModelTurn",
    "OpenAIChatModel",
    "RequestContext",
    "TextDelta",
    "ToolExecutor",
    "ToolOutcome",
    "ValidationResult",
    "VerificationLedger",
    "detect_action",
    "get_tools",
    "resolve_date",
    "tool_catalog",
    "validate_action_completed",
    "validate_tool_call",
]
