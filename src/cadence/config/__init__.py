"""Configuration models and helpers."""

from __future__ import annotations

from .settings import AppSettings, CalendarSettings, ChatSettings, LlmSettings, ServerSettings, get_settings

__all__ = ["AppSettings", "CalendarSettings", "ChatSettings", "LlmSettings", "ServerSettings", "get_settings"]
