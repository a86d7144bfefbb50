"""FastAPI application exposing the LSP bridge."""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request, WebSocket
from fastapi.staticfiles import StaticFiles

from lspbridge import __version__
from lspbridge.config import Config, get_config
from lspbridge.server.bridge import BridgeSession
from lspbridge.server.registry import SessionRegistry

log = logging.getLogger(__name__)


def create_app(config: Config | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    config = config or get_config()
    registry = SessionRegistry()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await registry.close_all()

    app = FastAPI(
        title="lspbridge",
        description="WebSocket bridge to a stdio language server",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.registry = registry
    app.state.started_at = time.time()

    _register_routes(app, config)

    # Mounted last so the API and WebSocket routes win over static files
    static_dir = config.server.static_dir
    if static_dir and Path(static_dir).is_dir():
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")
        log.info("Serving static files from %s", static_dir)

    return app


def _register_routes(app: FastAPI, config: Config) -> None:
    """Register the status route and the LSP WebSocket endpoint."""

    @app.get("/api/status")
    async def api_status(request: Request) -> dict[str, Any]:
        """Bridge health and the number of live sessions."""
        state = request.app.state
        return {
            "status": "ok",
            "sessions": state.registry.count(),
            "uptime": time.time() - state.started_at,
        }

    @app.websocket(config.server.path)
    async def lsp_endpoint(websocket: WebSocket) -> None:
        """One language server per connection, alive as long as the socket."""
        await websocket.accept()
        registry: SessionRegistry = websocket.app.state.registry
        session = BridgeSession(websocket, websocket.app.state.config)
        await registry.add(session)
        try:
            await session.run()
        finally:
            await registry.remove(session)
