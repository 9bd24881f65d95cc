"""HTTP transport for Cadence."""

from .server import ChatRequest, build_backend, build_orchestrator, create_app, run_local_server

__all__ = [
    "ChatRequest",
    "build_backend",
    "build_orchestrator",
    "create_app",
    "run_local_server",
]
