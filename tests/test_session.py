"""Tests for the client-side LanguageSession state machine and dispatch."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any

import pytest

from lspbridge.client.session import LanguageSession, SessionState
from lspbridge.errors import ConnectionLost, ProtocolError, ServerError, TransportError
from lspbridge.protocol.jsonrpc import JsonRpcMessage
from lspbridge.transport.channel import MessageChannel

INITIALIZE_RESULT = {
    "capabilities": {
        "hoverProvider": True,
        "semanticTokensProvider": {
            "legend": {"tokenTypes": ["keyword"], "tokenModifiers": []},
            "full": True,
        },
    }
}


class QueueChannel(MessageChannel):
    """In-memory channel; inbound items are messages, None (EOF) or exceptions."""

    def __init__(self, fail_open: Exception | None = None) -> None:
        self.inbound: asyncio.Queue[Any] = asyncio.Queue()
        self.sent: list[dict[str, Any]] = []
        self.replies: dict[str, dict[str, Any]] = {"initialize": {"result": INITIALIZE_RESULT}}
        self.fail_open = fail_open
        self.opened = False
        self.closed = False

    @property
    def is_open(self) -> bool:
        return self.opened and not self.closed

    async def open(self) -> None:
        if self.fail_open is not None:
            raise self.fail_open
        self.opened = True

    async def send(self, message: dict[str, Any]) -> None:
        if self.closed:
            raise TransportError("channel closed")
        self.sent.append(message)
        reply = self.replies.get(message.get("method", ""))
        if "id" in message and reply is not None:
            self.inbound.put_nowait({"jsonrpc": "2.0", "id": message["id"], **reply})

    async def messages(self) -> AsyncIterator[dict[str, Any]]:
        while True:
            item = await self.inbound.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    async def close(self) -> None:
        self.closed = True


async def eventually(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Wait until `predicate` holds."""

    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


@pytest.fixture
def channel() -> QueueChannel:
    return QueueChannel()


@pytest.fixture
def session(channel: QueueChannel) -> LanguageSession:
    return LanguageSession(channel, request_timeout=1.0)


class TestLifecycle:
    """Tests for state transitions."""

    @pytest.mark.asyncio
    async def test_start_reaches_ready(self, session: LanguageSession) -> None:
        states: list[SessionState] = []
        session.add_state_listener(states.append)

        result = await session.start()

        assert states == [
            SessionState.CONNECTING,
            SessionState.CONNECTED,
            SessionState.INITIALIZING,
            SessionState.READY,
        ]
        assert session.state is SessionState.READY
        assert result.semantic_tokens_legend is not None
        await session.close()

    @pytest.mark.asyncio
    async def test_close_disconnects(self, session: LanguageSession, channel: QueueChannel) -> None:
        await session.start()
        await session.close()

        assert session.state is SessionState.DISCONNECTED
        assert session.is_terminated
        assert channel.closed
        assert await session.wait_closed() is SessionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, session: LanguageSession) -> None:
        states: list[SessionState] = []
        await session.start()
        session.add_state_listener(states.append)

        await session.close()
        await session.close()

        assert states == [SessionState.DISCONNECTED]

    @pytest.mark.asyncio
    async def test_close_before_start_is_noop(self, session: LanguageSession) -> None:
        await session.close()
        assert session.state is SessionState.DISCONNECTED
        assert not session.is_terminated

    @pytest.mark.asyncio
    async def test_session_is_single_use(self, session: LanguageSession) -> None:
        await session.start()
        await session.close()

        with pytest.raises(RuntimeError, match="already started"):
            await session.connect()

    @pytest.mark.asyncio
    async def test_open_failure_errors(self) -> None:
        channel = QueueChannel(fail_open=TransportError("Cannot connect"))
        session = LanguageSession(channel)

        with pytest.raises(TransportError, match="Cannot connect"):
            await session.start()

        assert session.state is SessionState.ERRORED
        assert channel.closed

    @pytest.mark.asyncio
    async def test_initialize_error_errors(self, channel: QueueChannel) -> None:
        channel.replies["initialize"] = {"error": {"code": -32603, "message": "no workspace"}}
        session = LanguageSession(channel)

        with pytest.raises(ServerError, match="no workspace"):
            await session.start()

        assert session.state is SessionState.ERRORED

    @pytest.mark.asyncio
    async def test_malformed_initialize_result_errors(self, channel: QueueChannel) -> None:
        """A result that does not validate ends the session instead of stalling it."""
        channel.replies["initialize"] = {"result": {"capabilities": ["not", "a", "dict"]}}
        session = LanguageSession(channel)

        with pytest.raises(ProtocolError, match="Invalid initialize result"):
            await session.start()

        assert session.state is SessionState.ERRORED
        assert channel.closed
        assert session.correlator.pending_count == 0
        assert not any(m.get("method") == "initialized" for m in channel.sent)

    @pytest.mark.asyncio
    async def test_operations_require_ready(self, session: LanguageSession) -> None:
        with pytest.raises(RuntimeError, match="not ready"):
            await session.open("file:///a.sysml", "sysml", "")
        with pytest.raises(RuntimeError, match="not ready"):
            await session.hover("file:///a.sysml", 0, 0)

    @pytest.mark.asyncio
    async def test_removed_listener_not_called(self, session: LanguageSession) -> None:
        states: list[SessionState] = []
        remove = session.add_state_listener(states.append)
        remove()

        await session.start()
        await session.close()

        assert states == []


class TestTeardown:
    """Tests for what a terminal transition does to in-flight work."""

    @pytest.mark.asyncio
    async def test_close_rejects_pending_requests(self, session: LanguageSession) -> None:
        await session.start()
        hover = asyncio.create_task(session.hover("file:///a.sysml", 0, 0))
        await eventually(lambda: session.correlator.pending_count == 1)

        await session.close()

        with pytest.raises(ConnectionLost):
            await hover
        assert session.correlator.pending_count == 0

    @pytest.mark.asyncio
    async def test_peer_eof_disconnects(self, session: LanguageSession, channel: QueueChannel) -> None:
        await session.start()
        hover = asyncio.create_task(session.hover("file:///a.sysml", 0, 0))
        await eventually(lambda: session.correlator.pending_count == 1)

        channel.inbound.put_nowait(None)

        assert await asyncio.wait_for(session.wait_closed(), 1.0) is SessionState.DISCONNECTED
        with pytest.raises(ConnectionLost):
            await hover

    @pytest.mark.asyncio
    async def test_transport_failure_errors(
        self, session: LanguageSession, channel: QueueChannel
    ) -> None:
        await session.start()

        channel.inbound.put_nowait(TransportError("pipe broke"))

        assert await asyncio.wait_for(session.wait_closed(), 1.0) is SessionState.ERRORED
        assert channel.closed


class TestDispatch:
    """Tests for routing inbound messages."""

    @pytest.mark.asyncio
    async def test_publish_diagnostics_routed(
        self, session: LanguageSession, channel: QueueChannel
    ) -> None:
        await session.start()
        received: list[str] = []
        session.diagnostics.subscribe(lambda uri, diags: received.append(uri))

        channel.inbound.put_nowait(
            {
                "jsonrpc": "2.0",
                "method": "textDocument/publishDiagnostics",
                "params": {
                    "uri": "file:///a.sysml",
                    "diagnostics": [
                        {
                            "range": {
                                "start": {"line": 0, "character": 4},
                                "end": {"line": 0, "character": 9},
                            },
                            "severity": 2,
                            "message": "Unused import",
                        }
                    ],
                },
            }
        )
        await eventually(lambda: received == ["file:///a.sysml"])

        problem = session.diagnostics.problems[0]
        assert (problem.line, problem.column, problem.severity) == (1, 5, "warning")
        await session.close()

    @pytest.mark.asyncio
    async def test_malformed_diagnostics_do_not_end_session(
        self, session: LanguageSession, channel: QueueChannel
    ) -> None:
        await session.start()

        channel.inbound.put_nowait(
            {"jsonrpc": "2.0", "method": "textDocument/publishDiagnostics", "params": {}}
        )
        channel.inbound.put_nowait({"jsonrpc": "2.0", "id": 999, "result": None})
        await eventually(lambda: channel.inbound.empty())
        await asyncio.sleep(0.01)

        assert session.state is SessionState.READY
        await session.close()

    @pytest.mark.asyncio
    async def test_configuration_request_answered(
        self, session: LanguageSession, channel: QueueChannel
    ) -> None:
        await session.start()

        channel.inbound.put_nowait(
            {
                "jsonrpc": "2.0",
                "id": "srv-1",
                "method": "workspace/configuration",
                "params": {"items": [{"section": "sysml"}, {"section": "editor"}]},
            }
        )
        await eventually(lambda: any(m.get("id") == "srv-1" for m in channel.sent))

        answer = next(m for m in channel.sent if m.get("id") == "srv-1")
        assert answer == {"jsonrpc": "2.0", "id": "srv-1", "result": [{}, {}]}
        await session.close()

    @pytest.mark.asyncio
    async def test_other_server_requests_answered_with_null(
        self, session: LanguageSession, channel: QueueChannel
    ) -> None:
        await session.start()

        channel.inbound.put_nowait(
            {"jsonrpc": "2.0", "id": 7, "method": "client/registerCapability", "params": {}}
        )
        await eventually(lambda: any(m.get("id") == 7 and "result" in m for m in channel.sent))

        assert JsonRpcMessage.response(7, None).to_dict() in channel.sent
        await session.close()

    @pytest.mark.asyncio
    async def test_configuration_request_with_array_params(
        self, session: LanguageSession, channel: QueueChannel
    ) -> None:
        await session.start()

        channel.inbound.put_nowait(
            {"jsonrpc": "2.0", "id": 7, "method": "workspace/configuration", "params": [1]}
        )
        await eventually(lambda: any(m.get("id") == 7 and "result" in m for m in channel.sent))

        assert JsonRpcMessage.response(7, []).to_dict() in channel.sent
        assert session.state is SessionState.READY
        await session.close()

    @pytest.mark.asyncio
    async def test_document_flow_through_session(
        self, session: LanguageSession, channel: QueueChannel
    ) -> None:
        await session.start()

        await session.open("file:///x.sysml", "sysml", "A")
        document = await session.apply_change("file:///x.sysml", "B")

        assert (document.version, document.text) == (2, "B")
        assert [m.get("method") for m in channel.sent[-2:]] == [
            "textDocument/didOpen",
            "textDocument/didChange",
        ]
        await session.close()
