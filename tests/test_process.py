"""Tests for the language server process and the process-backed session.

Uses tests/fixtures/stub_language_server.py as the server.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from pathlib import Path

import pytest

from lspbridge.client.session import LanguageSession, SessionState
from lspbridge.config.schema import LanguageServerConfig
from lspbridge.errors import ProcessError, TransportError
from lspbridge.protocol.types import SemanticToken
from lspbridge.transport.channel import ProcessChannel
from lspbridge.transport.process import LanguageServerProcess, build_argv

STUB_SERVER = Path(__file__).parent / "fixtures" / "stub_language_server.py"


@pytest.fixture
def stub_config() -> LanguageServerConfig:
    """Config that launches the stub server with the current interpreter."""
    return LanguageServerConfig(
        command=sys.executable,
        args=[str(STUB_SERVER)],
        library_path=None,
        line_length=None,
        completion_limit=None,
        terminate_timeout=2.0,
    )


class TestBuildArgv:
    """Tests for the server command line."""

    def test_default_command_line(self) -> None:
        argv = build_argv(LanguageServerConfig(), client_pid=4242)
        assert argv == [
            "./syside",
            "server",
            "--stdio",
            "--std",
            "./sysml",
            "--client-process-id",
            "4242",
            "--line-length",
            "120",
            "--limit-completions",
            "100",
        ]

    def test_unset_flags_are_omitted(self, stub_config: LanguageServerConfig) -> None:
        argv = build_argv(stub_config, client_pid=1)
        assert argv == [sys.executable, str(STUB_SERVER), "--client-process-id", "1"]

    def test_defaults_to_own_pid(self, stub_config: LanguageServerConfig) -> None:
        assert build_argv(stub_config)[-1] == str(os.getpid())


class TestLanguageServerProcess:
    """Tests for spawning, messaging and terminating the server."""

    @pytest.mark.asyncio
    async def test_request_round_trip(self, stub_config: LanguageServerConfig) -> None:
        process = LanguageServerProcess(stub_config)
        await process.start()
        try:
            assert process.is_running
            assert process.pid is not None

            await process.send({"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}})
            message = await asyncio.wait_for(anext(process.messages()), 5.0)

            assert message["id"] == 1
            assert "semanticTokensProvider" in message["result"]["capabilities"]
        finally:
            await process.terminate()

        assert not process.is_running

    @pytest.mark.asyncio
    async def test_missing_executable(self) -> None:
        process = LanguageServerProcess(LanguageServerConfig(command="/nonexistent/syside"))

        with pytest.raises(ProcessError, match="not found"):
            await process.start()

    @pytest.mark.asyncio
    async def test_send_before_start(self, stub_config: LanguageServerConfig) -> None:
        process = LanguageServerProcess(stub_config)

        with pytest.raises(TransportError, match="not running"):
            await process.send({"jsonrpc": "2.0", "method": "exit"})

    @pytest.mark.asyncio
    async def test_start_twice(self, stub_config: LanguageServerConfig) -> None:
        process = LanguageServerProcess(stub_config)
        await process.start()
        try:
            with pytest.raises(ProcessError, match="already started"):
                await process.start()
        finally:
            await process.terminate()

    @pytest.mark.asyncio
    async def test_exit_notification_ends_process(
        self, stub_config: LanguageServerConfig
    ) -> None:
        process = LanguageServerProcess(stub_config)
        await process.start()

        await process.send({"jsonrpc": "2.0", "method": "exit"})

        assert await asyncio.wait_for(process.wait(), 5.0) == 0
        assert [m async for m in process.messages()] == []
        await process.terminate()

    @pytest.mark.asyncio
    async def test_stderr_goes_to_log(
        self, stub_config: LanguageServerConfig, caplog: pytest.LogCaptureFixture
    ) -> None:
        caplog.set_level(logging.INFO, logger="lspbridge.server.stderr")
        process = LanguageServerProcess(stub_config)
        await process.start()
        try:
            for _ in range(200):
                if "stub language server ready" in caplog.text:
                    break
                await asyncio.sleep(0.01)
            assert "stub language server ready" in caplog.text
        finally:
            await process.terminate()

    @pytest.mark.asyncio
    async def test_terminate_is_idempotent(self, stub_config: LanguageServerConfig) -> None:
        process = LanguageServerProcess(stub_config)
        await process.terminate()

        await process.start()
        await process.terminate()
        await process.terminate()

        assert process.returncode is not None


class TestProcessChannelSession:
    """End-to-end LanguageSession over a spawned server."""

    @pytest.mark.asyncio
    async def test_full_session(self, stub_config: LanguageServerConfig) -> None:
        channel = ProcessChannel(stub_config)
        session = LanguageSession(channel, request_timeout=5.0)
        published = asyncio.Event()
        session.diagnostics.subscribe(lambda uri, diags: published.set())

        async with session:
            assert session.state is SessionState.READY

            await session.open("file:///model.sysml", "sysml", "part def A;\n  error here\n")
            await asyncio.wait_for(published.wait(), 5.0)

            problems = session.diagnostics.problems
            assert len(problems) == 1
            assert (problems[0].line, problems[0].column) == (2, 3)
            assert problems[0].severity == "error"
            assert problems[0].code == "E001"

            published.clear()
            await session.apply_change("file:///model.sysml", "part def A;\n")
            await asyncio.wait_for(published.wait(), 5.0)
            assert session.diagnostics.problems == []

            hover = await session.hover("file:///model.sysml", 0, 2)
            assert hover is not None and hover.contents == ["stub hover 0:2"]

            tokens = await session.semantic_tokens("file:///model.sysml")
            assert tokens == [SemanticToken(0, 0, 4, "keyword", ("declaration",))]

        assert session.state is SessionState.DISCONNECTED
        assert not channel.is_open

    @pytest.mark.asyncio
    async def test_spawn_failure_errors_session(self) -> None:
        session = LanguageSession(ProcessChannel(LanguageServerConfig(command="/nonexistent/syside")))

        with pytest.raises(ProcessError):
            await session.start()

        assert session.state is SessionState.ERRORED
