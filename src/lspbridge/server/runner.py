"""Bridge server lifecycle under uvicorn."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import uvicorn

from lspbridge.server.app import create_app

if TYPE_CHECKING:
    from lspbridge.config.schema import Config

log = logging.getLogger(__name__)


def build_server(config: Config) -> uvicorn.Server:
    """Build a uvicorn server for the bridge app without starting it."""
    app = create_app(config)
    uvicorn_config = uvicorn.Config(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level="warning",
        access_log=False,
    )
    return uvicorn.Server(uvicorn_config)


async def serve(config: Config) -> None:
    """Run the bridge until interrupted."""
    server = build_server(config)
    log.info(
        "HTTP server listening on http://%s:%d (LSP WebSocket at %s)",
        config.server.host,
        config.server.port,
        config.server.path,
    )
    await server.serve()
