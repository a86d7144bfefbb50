"""One WebSocket connection bridged to one language server process.

Messages flow:
- Browser -> (WebSocket text frame) -> Bridge -> (Content-Length frame, stdin) -> Server
- Server -> (stdout, Content-Length frames) -> Bridge -> (WebSocket text frame) -> Browser

Whichever side goes away first takes the other with it: a WebSocket close
terminates the process, a process exit closes the WebSocket.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import uuid
from typing import TYPE_CHECKING, Any

from starlette.websockets import WebSocketState

from lspbridge.errors import ProcessError, ProtocolError
from lspbridge.logging import TRACE
from lspbridge.transport.process import LanguageServerProcess

if TYPE_CHECKING:
    from fastapi import WebSocket

    from lspbridge.config.schema import Config

log = logging.getLogger(__name__)

# WebSocket close codes
CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001
CLOSE_INTERNAL_ERROR = 1011


def parse_client_message(data: str | bytes) -> dict[str, Any]:
    """Parse one client frame into a JSON-RPC message.

    Raises:
        ProtocolError: If the frame is not a JSON object.
    """
    try:
        message = json.loads(data)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"Invalid JSON from client: {e}") from e
    if not isinstance(message, dict):
        raise ProtocolError(f"JSON-RPC message must be an object, got {type(message).__name__}")
    return message


class BridgeSession:
    """Owns one accepted WebSocket and the language server spawned for it."""

    def __init__(self, websocket: WebSocket, config: Config) -> None:
        self.id = uuid.uuid4().hex[:8]
        self.websocket = websocket
        self.config = config
        self.process = LanguageServerProcess(
            config.language_server,
            max_message_size=config.session.max_message_size,
        )
        self._close_code = CLOSE_NORMAL
        self._stopping = asyncio.Event()

    async def run(self) -> None:
        """Spawn the server and pump messages until either side ends."""
        log.info("[%s] Client connected, spawning language server", self.id)
        try:
            await self.process.start()
        except ProcessError as e:
            log.error("[%s] %s", self.id, e)
            await self._close_websocket(CLOSE_INTERNAL_ERROR, "Language server unavailable")
            return

        legs = {
            asyncio.create_task(self._client_to_server(), name=f"{self.id}:client->server"),
            asyncio.create_task(self._server_to_client(), name=f"{self.id}:server->client"),
            asyncio.create_task(self.process.wait(), name=f"{self.id}:process-exit"),
            asyncio.create_task(self._stopping.wait(), name=f"{self.id}:shutdown"),
        }
        try:
            done, _ = await asyncio.wait(legs, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    self._close_code = CLOSE_INTERNAL_ERROR
                    log.error("[%s] %s failed: %s", self.id, task.get_name(), task.exception())
                else:
                    log.info("[%s] %s finished", self.id, task.get_name())
        finally:
            for task in legs:
                task.cancel()
            await asyncio.gather(*legs, return_exceptions=True)
            await self.process.terminate()
            await self._close_websocket(self._close_code)
            log.info("[%s] Session closed", self.id)

    def stop(self, code: int = CLOSE_GOING_AWAY) -> None:
        """Ask a running session to tear down (server shutdown)."""
        self._close_code = code
        self._stopping.set()

    async def _client_to_server(self) -> None:
        while True:
            event = await self.websocket.receive()
            if event["type"] == "websocket.disconnect":
                log.info(
                    "[%s] WebSocket closed with code %s, terminating language server",
                    self.id,
                    event.get("code"),
                )
                return

            data = event.get("text")
            if data is None:
                data = event.get("bytes") or b""
            try:
                message = parse_client_message(data)
            except ProtocolError as e:
                log.warning("[%s] Dropping client message: %s", self.id, e)
                continue

            log.log(TRACE, "[%s] WebSocket -> server: %s", self.id, data)
            await self.process.send(message)

    async def _server_to_client(self) -> None:
        async for message in self.process.messages():
            if not self._websocket_open():
                log.error("[%s] WebSocket not open, dropping server message", self.id)
                continue
            text = json.dumps(message, separators=(",", ":"), ensure_ascii=False)
            log.log(TRACE, "[%s] server -> WebSocket: %s", self.id, text)
            await self.websocket.send_text(text)

    def _websocket_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def _close_websocket(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        if not self._websocket_open():
            return
        # The peer may already be gone; the close frame is best effort
        with contextlib.suppress(Exception):
            await self.websocket.close(code=code, reason=reason)
