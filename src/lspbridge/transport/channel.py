"""Message channels carrying JSON-RPC messages for a client session.

A channel delivers whole messages in both directions; how they are framed
is the channel's business:
- ProcessChannel talks to a directly spawned language server over
  Content-Length framed stdio.
- WebSocketChannel talks to the bridge server, one JSON message per
  WebSocket text frame.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK, InvalidURI, WebSocketException

from lspbridge.errors import TransportError
from lspbridge.transport.process import LanguageServerProcess

if TYPE_CHECKING:
    from lspbridge.config.schema import LanguageServerConfig

log = logging.getLogger(__name__)


class MessageChannel(ABC):
    """Bidirectional, message-oriented JSON-RPC channel."""

    @abstractmethod
    async def open(self) -> None:
        """Establish the channel.

        Raises:
            TransportError: If the channel cannot be established.
        """

    @abstractmethod
    async def send(self, message: dict[str, Any]) -> None:
        """Send one message.

        Raises:
            TransportError: If the channel is closed or the write fails.
        """

    @abstractmethod
    def messages(self) -> AsyncIterator[dict[str, Any]]:
        """Iterate over inbound messages; ends when the peer closes."""

    @abstractmethod
    async def close(self) -> None:
        """Close the channel. Safe to call more than once."""

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Whether the channel can currently send."""


class ProcessChannel(MessageChannel):
    """Channel to a language server process owned by this channel."""

    def __init__(
        self,
        config: LanguageServerConfig,
        *,
        max_message_size: int | None = None,
    ) -> None:
        kwargs = {"max_message_size": max_message_size} if max_message_size else {}
        self.process = LanguageServerProcess(config, **kwargs)

    @property
    def is_open(self) -> bool:
        return self.process.is_running

    async def open(self) -> None:
        await self.process.start()

    async def send(self, message: dict[str, Any]) -> None:
        await self.process.send(message)

    async def messages(self) -> AsyncIterator[dict[str, Any]]:
        async for message in self.process.messages():
            yield message

    async def close(self) -> None:
        await self.process.terminate()


class WebSocketChannel(MessageChannel):
    """Channel to the bridge server's WebSocket endpoint."""

    def __init__(self, url: str, *, open_timeout: float = 10.0) -> None:
        self.url = url
        self.open_timeout = open_timeout
        self._ws: ClientConnection | None = None
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closed

    async def open(self) -> None:
        try:
            self._ws = await connect(self.url, open_timeout=self.open_timeout)
        except (OSError, TimeoutError, InvalidURI, WebSocketException) as e:
            raise TransportError(f"Cannot connect to {self.url}: {e}") from e
        log.info("Connected to %s", self.url)

    async def send(self, message: dict[str, Any]) -> None:
        if self._ws is None or self._closed:
            raise TransportError("WebSocket not connected")
        try:
            await self._ws.send(json.dumps(message, separators=(",", ":")))
        except ConnectionClosed as e:
            self._closed = True
            raise TransportError(f"WebSocket closed: {e}") from e

    async def messages(self) -> AsyncIterator[dict[str, Any]]:
        if self._ws is None:
            return

        try:
            async for raw in self._ws:
                try:
                    message = json.loads(raw)
                except (TypeError, ValueError) as e:
                    log.warning("Dropping malformed message from %s: %s", self.url, e)
                    continue
                if not isinstance(message, dict):
                    log.warning("Dropping non-object message from %s", self.url)
                    continue
                yield message
        except ConnectionClosedOK:
            pass
        except ConnectionClosed as e:
            raise TransportError(f"WebSocket closed abnormally: {e}") from e
        finally:
            self._closed = True

    async def close(self) -> None:
        self._closed = True
        if self._ws is not None:
            await self._ws.close()
            log.info("LSP connection closed")
