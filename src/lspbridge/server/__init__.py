"""Bridge server: WebSocket clients coupled to stdio language servers."""

from lspbridge.server.app import create_app
from lspbridge.server.bridge import BridgeSession
from lspbridge.server.registry import SessionRegistry
from lspbridge.server.runner import build_server, serve

__all__ = [
    "BridgeSession",
    "SessionRegistry",
    "build_server",
    "create_app",
    "serve",
]
