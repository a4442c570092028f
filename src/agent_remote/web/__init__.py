"""HTTP surface for the agent-remote service."""

from .server import build_dispatcher, create_app, run_server

__all__ = ["build_dispatcher", "create_app", "run_server"]
