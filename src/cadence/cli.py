from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime
from typing import List

from .bootstrap import configure_logging
from .config import get_settings
from .core.timezone import get_zone
from .domain import ChatMessage, ConversationTurn
from .orchestrator import ChatOrchestrator, OpenAIChatModel, VerificationLedger, resolve_date
from .services.http import build_backend, run_local_server


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Cadence calendar assistant command line interface.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    api_parser = subparsers.add_parser("api", help="Start the HTTP server exposing the chat stream.")
    api_parser.add_argument("--host", default=settings.server.host)
    api_parser.add_argument("--port", type=int, default=settings.server.port)

    chat_parser = subparsers.add_parser("chat", help="Chat with your calendar in the terminal.")
    chat_parser.add_argument(
        "--token",
        default=os.getenv("CADENCE_ACCESS_TOKEN", "local"),
        help="Calendar access token (the local backend uses it as a namespace).",
    )

    resolve_parser = subparsers.add_parser("resolve", help="Resolve a natural-language date.")
    resolve_parser.add_argument("query", help='Date phrase such as "next Monday at 3pm".')
    resolve_parser.add_argument("--now", help="Reference instant, YYYY-MM-DDTHH:MM:SS (defaults to now).")

    return parser


def _resolve(query: str, now: str | None) -> int:
    tz = get_zone(get_settings().chat.timezone)
    reference = datetime.fromisoformat(now).replace(tzinfo=tz) if now else datetime.now(tz)
    try:
        print(resolve_date(query, reference, VerificationLedger()))
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2
    return 0


async def _chat(token: str) -> int:
    settings = get_settings()
    if not settings.llm.is_configured:
        print(f"Model is not configured. Set: {', '.join(settings.llm.missing_env_vars)}", file=sys.stderr)
        return 1
    orchestrator = ChatOrchestrator.from_settings(settings, OpenAIChatModel(settings.llm), build_backend(settings))
    try:
        await _chat_loop(orchestrator, token)
    finally:
        await orchestrator.aclose()
    return 0


async def _chat_loop(orchestrator: ChatOrchestrator, token: str) -> None:
    history: List[ChatMessage] = []
    print("Cadence chat. Empty line or Ctrl-D to quit.")
    while True:
        try:
            message = input("> ").strip()
        except EOFError:
            break
        if not message:
            break
        reply: List[str] = []
        turn = ConversationTurn(message=message, history=tuple(history))
        async for event in orchestrator.stream(turn, token):
            kind = event["type"]
            if kind == "text_delta":
                reply.append(event["content"])
                print(event["content"], end="", flush=True)
            elif kind == "status":
                print(f"\n[{event['message']}]", flush=True)
            elif kind == "error":
                print(f"\nerror ({event.get('code', 'internal')}): {event['message']}", file=sys.stderr)
            elif kind == "done" and event["metadata"]["modifiedEvents"]:
                print("\n(calendar updated)", end="")
        print()
        history.extend([ChatMessage("user", message), ChatMessage("assistant", "".join(reply))])


def main() -> None:
    configure_logging()
    logging.getLogger(__name__).info("Cadence CLI starting")
    parser = build_parser()
    args = parser.parse_args()

    if args.command == "api":
        run_local_server(host=args.host, port=args.port)
    elif args.command == "chat":
        raise SystemExit(asyncio.run(_chat(args.token)))
    elif args.command == "resolve":
        raise SystemExit(_resolve(args.query, args.now))
    else:  # pragma: no cover - argparse enforces choices
        parser.print_help()


if __name__ == "__main__":
    main()
