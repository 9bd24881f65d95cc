from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Literal, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from hypercorn.asyncio import serve
from hypercorn.config import Config
from pydantic import BaseModel, Field

from ...config import AppSettings, get_settings
from ...core.calendar_store import CalendarStore
from ...domain import ChatMessage, ConversationTurn
from ...orchestrator import ChatOrchestrator, OpenAIChatModel, get_tools
from ...orchestrator.events import encode
from ..calendar import CalendarBackend
from ..google_calendar import GoogleCalendarBackend

logger = logging.getLogger(__name__)


class HistoryMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    message: str
    history: List[HistoryMessage] = Field(default_factory=list)

    def to_turn(self) -> ConversationTurn:
        return ConversationTurn(
            message=self.message.strip(),
            history=tuple(ChatMessage(role=item.role, content=item.content) for item in self.history),
        )


def build_backend(settings: AppSettings) -> CalendarBackend:
    calendar = settings.calendar
    if calendar.backend == "local":
        return CalendarStore(
            calendar.local_store_path,
            time_zone=settings.chat.timezone,
            stats_window_days=calendar.stats_window_days,
            stats_top_attendees=calendar.stats_top_attendees,
        )
    if calendar.backend != "google":
        raise ValueError(f"Unknown calendar backend: {calendar.backend!r}")
    return GoogleCalendarBackend(
        calendar_id=calendar.google_calendar_id,
        base_url=calendar.google_api_base_url,
        time_zone=settings.chat.timezone,
        timeout=calendar.google_timeout_seconds,
        max_results=calendar.max_results,
        stats_window_days=calendar.stats_window_days,
        stats_top_attendees=calendar.stats_top_attendees,
        stats_max_results=calendar.stats_max_results,
    )


def build_orchestrator(settings: AppSettings) -> Optional[ChatOrchestrator]:
    if not settings.llm.is_configured:
        return None
    return ChatOrchestrator.from_settings(settings, OpenAIChatModel(settings.llm), build_backend(settings))


def _bearer_token(request: Request) -> str:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Not authenticated")
    return token.strip()


def create_app(orchestrator: Optional[ChatOrchestrator] = None, settings: Optional[AppSettings] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        if app.state.orchestrator is not None:
            await app.state.orchestrator.aclose()
            logger.info("Calendar backend closed")

    app = FastAPI(title="Cadence API", version="0.3.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.orchestrator = orchestrator if orchestrator is not None else build_orchestrator(settings)

    @app.get("/api/health")
    async def health() -> JSONResponse:
        return JSONResponse(
            {
                "status": "ok",
                "model_configured": app.state.orchestrator is not None,
                "calendar_backend": settings.calendar.backend,
            }
        )

    @app.get("/api/tools")
    async def list_tools() -> JSONResponse:
        return JSONResponse({"tools": [spec.describe() for spec in get_tools()]})

    @app.post("/api/chat")
    async def chat(payload: ChatRequest, token: str = Depends(_bearer_token)) -> StreamingResponse:
        if not payload.message.strip():
            raise HTTPException(status_code=400, detail="Message is required")
        chat_orchestrator: Optional[ChatOrchestrator] = app.state.orchestrator
        if chat_orchestrator is None:
            missing = ", ".join(settings.llm.missing_env_vars) or "unknown"
            raise HTTPException(status_code=503, detail=f"Model is not configured. Missing: {missing}")

        logger.info("Processing chat message: %.50s", payload.message)

        async def body() -> AsyncIterator[bytes]:
            async for event in chat_orchestrator.stream(payload.to_turn(), token):
                yield encode(event)

        return StreamingResponse(body(), media_type="application/x-ndjson")

    return app


async def _serve(app: FastAPI, config: Config) -> None:
    await serve(app, config)


def run_local_server(host: str = "127.0.0.1", port: int = 8000) -> None:
    config = Config()
    config.bind = [f"{host}:{port}"]
    app = create_app()
    logger.info("Serving Cadence API on %s:%s", host, port)
    asyncio.run(_serve(app, config))

