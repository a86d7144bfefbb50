"""Client-side LSP session over one message channel.

State machine:

    DISCONNECTED -> CONNECTING -> CONNECTED -> INITIALIZING -> READY
                          \\             \\              \\          \\
                           +-------------+--------------+----------+--> DISCONNECTED | ERRORED

A session is single-use: it starts in DISCONNECTED, and once it has left that
state, reaching DISCONNECTED or ERRORED again is terminal. Entering a terminal
state rejects every pending request with ConnectionLost, stops the reader and
closes the channel (which terminates a directly spawned server).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from enum import Enum
from typing import Any

from lspbridge.client.correlator import DEFAULT_REQUEST_TIMEOUT, RequestCorrelator
from lspbridge.client.documents import DiagnosticsStore, Document, DocumentManager
from lspbridge.errors import ConnectionLost, ProtocolError, TransportError
from lspbridge.protocol.jsonrpc import JsonRpcMessage
from lspbridge.protocol.types import Hover, InitializeResult, SemanticToken
from lspbridge.transport.channel import MessageChannel

log = logging.getLogger(__name__)

PUBLISH_DIAGNOSTICS = "textDocument/publishDiagnostics"


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    INITIALIZING = "initializing"
    READY = "ready"
    ERRORED = "errored"


_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.DISCONNECTED: {SessionState.CONNECTING},
    SessionState.CONNECTING: {SessionState.CONNECTED},
    SessionState.CONNECTED: {SessionState.INITIALIZING},
    SessionState.INITIALIZING: {SessionState.READY},
    SessionState.READY: set(),
    SessionState.ERRORED: set(),
}
_TERMINAL = {SessionState.DISCONNECTED, SessionState.ERRORED}

StateListener = Callable[[SessionState], None]


class LanguageSession:
    """Couples one channel with a correlator, documents and diagnostics.

    Example:
        >>> async with LanguageSession(ProcessChannel(config.language_server)) as session:
        ...     await session.open("file:///x.sysml", "sysml", text)
        ...     print(session.diagnostics.problems)
    """

    def __init__(
        self,
        channel: MessageChannel,
        *,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
    ) -> None:
        self.channel = channel
        self.correlator = RequestCorrelator(channel.send, timeout=request_timeout)
        self.documents = DocumentManager(self.correlator, DiagnosticsStore())
        self._state = SessionState.DISCONNECTED
        self._started = False
        self._listeners: list[StateListener] = []
        self._reader_task: asyncio.Task[None] | None = None
        self._closed = asyncio.Event()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_terminated(self) -> bool:
        return self._started and self._state in _TERMINAL

    @property
    def diagnostics(self) -> DiagnosticsStore:
        return self.documents.diagnostics

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]:
        """Register a callback for state changes. Returns an unregister function."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def __aenter__(self) -> LanguageSession:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def start(self) -> InitializeResult:
        """Connect and run the initialize handshake."""
        await self.connect()
        return await self.initialize()

    async def connect(self) -> None:
        """Open the channel and start dispatching inbound messages.

        Raises:
            TransportError / ProcessError: If the channel cannot be opened;
                the session is ERRORED afterwards.
        """
        if self._started:
            raise RuntimeError(f"Session already started (state: {self._state.value})")
        self._started = True
        self._set_state(SessionState.CONNECTING)

        try:
            await self.channel.open()
        except BaseException as e:
            await self._teardown(SessionState.ERRORED, f"connect failed: {e}")
            raise

        self._set_state(SessionState.CONNECTED)
        self._reader_task = asyncio.create_task(self._read_loop())

    async def initialize(self) -> InitializeResult:
        """Run the initialize handshake; a failure leaves the session ERRORED."""
        if self._state is SessionState.READY:
            return await self.documents.initialize()
        self._set_state(SessionState.INITIALIZING)

        try:
            result = await self.documents.initialize()
        except BaseException as e:
            await self._teardown(SessionState.ERRORED, f"initialize failed: {e}")
            raise

        self._set_state(SessionState.READY)
        return result

    async def close(self) -> None:
        """End the session normally."""
        await self._teardown(SessionState.DISCONNECTED, "closed by client")

    async def wait_closed(self) -> SessionState:
        """Wait until the session reaches a terminal state."""
        await self._closed.wait()
        return self._state

    async def open(self, uri: str, language_id: str, text: str) -> Document:
        self._require_ready()
        return await self.documents.open(uri, language_id, text)

    async def apply_change(self, uri: str, new_text: str) -> Document:
        self._require_ready()
        return await self.documents.apply_change(uri, new_text)

    async def hover(self, uri: str, line: int, character: int) -> Hover | None:
        self._require_ready()
        return await self.documents.hover_with_fallback(uri, line, character)

    async def semantic_tokens(self, uri: str) -> list[SemanticToken]:
        self._require_ready()
        return await self.documents.semantic_tokens(uri)

    def _require_ready(self) -> None:
        if self._state is not SessionState.READY:
            raise RuntimeError(f"Session not ready (state: {self._state.value})")

    def _set_state(self, state: SessionState) -> None:
        if state not in _TRANSITIONS[self._state] and state not in _TERMINAL:
            raise RuntimeError(f"Invalid session transition {self._state.value} -> {state.value}")
        log.debug("Session state %s -> %s", self._state.value, state.value)
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                log.exception("Session state listener failed")

    async def _read_loop(self) -> None:
        try:
            async for raw in self.channel.messages():
                await self._dispatch(JsonRpcMessage.from_dict(raw))
        except asyncio.CancelledError:
            raise
        except TransportError as e:
            log.error("Transport failed: %s", e)
            await self._teardown(SessionState.ERRORED, str(e))
            return
        except Exception as e:
            log.exception("Unexpected error reading from channel")
            await self._teardown(SessionState.ERRORED, str(e))
            return

        log.info("Channel closed by peer")
        await self._teardown(SessionState.DISCONNECTED, "channel closed")

    async def _dispatch(self, message: JsonRpcMessage) -> None:
        if message.is_response():
            self.correlator.on_response(message)
        elif message.is_notification():
            if message.method == PUBLISH_DIAGNOSTICS:
                try:
                    self.documents.on_publish_diagnostics(message.params)
                except ProtocolError as e:
                    log.warning("%s", e)
            else:
                log.debug("LSP notification: %s", message.method)
        elif message.is_request():
            await self._answer_server_request(message)
        else:
            log.warning("Dropping unrecognized message: %r", message.to_dict())

    async def _answer_server_request(self, message: JsonRpcMessage) -> None:
        """Answer server-to-client requests with empty results."""
        result: Any = None
        if message.method == "workspace/configuration":
            params = message.params if isinstance(message.params, dict) else {}
            items = params.get("items")
            result = [{} for _ in items] if isinstance(items, list) else []

        log.debug("Answering server request %s (id=%r)", message.method, message.id)
        try:
            await self.channel.send(JsonRpcMessage.response(message.id, result).to_dict())
        except TransportError as e:
            log.warning("Could not answer server request %s: %s", message.method, e)

    async def _teardown(self, state: SessionState, reason: str) -> None:
        if self._state in _TERMINAL and self._closed.is_set():
            return
        if self._state in _TERMINAL and not self._started:
            return

        log.info("Session %s: %s", state.value, reason)
        self._set_state(state)
        self._closed.set()

        self.correlator.reject_all(ConnectionLost(f"Session {state.value}: {reason}"))

        task = self._reader_task
        self._reader_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        try:
            await self.channel.close()
        except Exception:
            log.exception("Error closing channel")
