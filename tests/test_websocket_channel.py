"""Tests for LanguageSession over a WebSocketChannel to a live bridge."""

from __future__ import annotations

import asyncio
import socket
import sys
from pathlib import Path

import pytest

from lspbridge.client.session import LanguageSession, SessionState
from lspbridge.config.schema import Config, LanguageServerConfig, ServerConfig
from lspbridge.errors import TransportError
from lspbridge.server.runner import build_server
from lspbridge.transport.channel import WebSocketChannel

STUB_SERVER = Path(__file__).parent / "fixtures" / "stub_language_server.py"


def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest.fixture
async def bridge_url():
    """Run the bridge under uvicorn for the duration of a test."""
    config = Config(
        server=ServerConfig(port=free_port(), static_dir=None),
        language_server=LanguageServerConfig(
            command=sys.executable,
            args=[str(STUB_SERVER)],
            library_path=None,
            line_length=None,
            completion_limit=None,
            terminate_timeout=2.0,
        ),
    )
    server = build_server(config)
    task = asyncio.create_task(server.serve())
    for _ in range(500):
        if server.started:
            break
        await asyncio.sleep(0.01)
    assert server.started, "bridge did not start"

    yield f"ws://127.0.0.1:{config.server.port}{config.server.path}"

    server.should_exit = True
    await asyncio.wait_for(task, 10.0)


class TestWebSocketChannel:
    """Tests for the channel on its own."""

    @pytest.mark.asyncio
    async def test_connect_refused(self) -> None:
        channel = WebSocketChannel(f"ws://127.0.0.1:{free_port()}/sysml", open_timeout=2.0)

        with pytest.raises(TransportError, match="Cannot connect"):
            await channel.open()
        assert not channel.is_open

    @pytest.mark.asyncio
    async def test_send_before_open(self) -> None:
        channel = WebSocketChannel("ws://127.0.0.1:1/sysml")

        with pytest.raises(TransportError, match="not connected"):
            await channel.send({"jsonrpc": "2.0", "method": "exit"})


class TestSessionThroughBridge:
    """End-to-end: client session -> WebSocket -> bridge -> stub server."""

    @pytest.mark.asyncio
    async def test_diagnostics_and_hover(self, bridge_url: str) -> None:
        session = LanguageSession(WebSocketChannel(bridge_url), request_timeout=5.0)
        published = asyncio.Event()
        session.diagnostics.subscribe(lambda uri, diags: published.set())

        async with session:
            await session.open("file:///bridge.sysml", "sysml", "error")
            await asyncio.wait_for(published.wait(), 5.0)

            assert [p.message for p in session.diagnostics.problems] == ["Unexpected error token"]

            hover = await session.hover("file:///bridge.sysml", 0, 1)
            assert hover is not None and hover.contents == ["stub hover 0:1"]

        assert session.state is SessionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_server_exit_ends_session(self, bridge_url: str) -> None:
        session = LanguageSession(WebSocketChannel(bridge_url), request_timeout=5.0)
        await session.start()

        await session.correlator.send_notification("exit")

        state = await asyncio.wait_for(session.wait_closed(), 5.0)
        assert state is SessionState.DISCONNECTED
