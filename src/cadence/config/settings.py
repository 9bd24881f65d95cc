from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from ..core.config import DATA_DIR

load_dotenv()


@dataclass(frozen=True)
class LlmSettings:
    api_key: Optional[str]
    model: str
    base_url: Optional[str]
    organization: Optional[str]
    project: Optional[str]
    temperature: float
    max_tokens: int

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.model)

    @property
    def missing_env_vars(self) -> list[str]:
        missing = []
        if not self.api_key:
            missing.append("OPENAI_API_KEY")
        if not self.model:
            missing.append("OPENAI_MODEL")
        return missing


@dataclass(frozen=True)
class ChatSettings:
    timezone: str
    completion_attempts: int
    max_graph_steps: int
    request_cache_ttl: timedelta


@dataclass(frozen=True)
class CalendarSettings:
    backend: str
    google_calendar_id: str
    google_api_base_url: str
    google_timeout_seconds: float
    local_store_path: Path
    default_range_days: int
    max_results: int
    stats_window_days: int
    stats_top_attendees: int
    stats_max_results: int


@dataclass(frozen=True)
class ServerSettings:
    host: str
    port: int


@dataclass(frozen=True)
class AppSettings:
    llm: LlmSettings
    chat: ChatSettings
    calendar: CalendarSettings
    server: ServerSettings


def _int_from_env(name: str, default: int, *, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return max(value, minimum)


def _float_from_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    llm = LlmSettings(
        api_key=os.getenv("OPENAI_API_KEY"),
        model=os.getenv("OPENAI_MODEL", "gpt-4.1-mini"),
        base_url=os.getenv("OPENAI_BASE_URL"),
        organization=os.getenv("OPENAI_ORG"),
        project=os.getenv("OPENAI_PROJECT"),
        temperature=_float_from_env("CADENCE_TEMPERATURE", 0.2),
        max_tokens=_int_from_env("CADENCE_MAX_TOKENS", 1024, minimum=1),
    )

    chat = ChatSettings(
        timezone=os.getenv("CADENCE_TIMEZONE", "UTC"),
        completion_attempts=_int_from_env("CADENCE_COMPLETION_ATTEMPTS", 2, minimum=1),
        max_graph_steps=_int_from_env("CADENCE_MAX_GRAPH_STEPS", 100, minimum=10),
        request_cache_ttl=timedelta(seconds=_int_from_env("CADENCE_REQUEST_CACHE_TTL_SECONDS", 60)),
    )

    calendar = CalendarSettings(
        backend=os.getenv("CADENCE_CALENDAR_BACKEND", "google").lower(),
        google_calendar_id=os.getenv("CADENCE_GOOGLE_CALENDAR_ID", "primary"),
        google_api_base_url=os.getenv(
            "CADENCE_GOOGLE_API_BASE_URL", "https://www.googleapis.com/calendar/v3"
        ),
        google_timeout_seconds=_float_from_env("CADENCE_GOOGLE_TIMEOUT_SECONDS", 30.0),
        local_store_path=Path(os.getenv("CADENCE_LOCAL_STORE_PATH", DATA_DIR / "calendar_state.json")),
        default_range_days=_int_from_env("CADENCE_DEFAULT_RANGE_DAYS", 7, minimum=1),
        max_results=_int_from_env("CADENCE_MAX_RESULTS", 500, minimum=1),
        stats_window_days=_int_from_env("CADENCE_STATS_WINDOW_DAYS", 7, minimum=1),
        stats_top_attendees=_int_from_env("CADENCE_STATS_TOP_ATTENDEES", 5, minimum=1),
        stats_max_results=_int_from_env("CADENCE_STATS_MAX_RESULTS", 100, minimum=1),
    )

    server = ServerSettings(
        host=os.getenv("CADENCE_HOST", "127.0.0.1"),
        port=_int_from_env("CADENCE_PORT", 8000, minimum=1),
    )

    return AppSettings(llm=llm, chat=chat, calendar=calendar, server=server)
