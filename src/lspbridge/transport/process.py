"""Language server subprocess lifecycle.

One LanguageServerProcess is owned by exactly one session. It spawns the
server with piped stdio, frames outbound messages onto stdin, decodes stdout
into messages, forwards stderr to the log, and terminates the process when
the session ends.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import sys
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

from lspbridge.errors import ProcessError, TransportError
from lspbridge.logging import TRACE, get_logger
from lspbridge.transport.lsp.framing import DEFAULT_MAX_MESSAGE_SIZE, FrameDecoder, encode_message

if TYPE_CHECKING:
    from lspbridge.config.schema import LanguageServerConfig

log = logging.getLogger(__name__)
stderr_log = get_logger("server.stderr")

READ_CHUNK_SIZE = 64 * 1024


def build_argv(config: LanguageServerConfig, client_pid: int | None = None) -> list[str]:
    """Build the server command line.

    Flag values are passed through as configured; a flag is left out when
    its value is unset.
    """
    argv = [config.command, *config.args]
    if config.library_path:
        argv += ["--std", str(config.library_path)]
    argv += ["--client-process-id", str(client_pid if client_pid is not None else os.getpid())]
    if config.line_length is not None:
        argv += ["--line-length", str(config.line_length)]
    if config.completion_limit is not None:
        argv += ["--limit-completions", str(config.completion_limit)]
    return argv


class LanguageServerProcess:
    """A spawned language server speaking Content-Length framed JSON-RPC on stdio."""

    def __init__(
        self,
        config: LanguageServerConfig,
        *,
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
    ) -> None:
        self.config = config
        self._decoder = FrameDecoder(max_message_size=max_message_size)
        self._process: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._write_lock = asyncio.Lock()

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process else None

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    def argv(self) -> list[str]:
        return build_argv(self.config)

    async def start(self) -> None:
        """Spawn the server process.

        Raises:
            ProcessError: If the executable cannot be started.
        """
        if self._process is not None:
            raise ProcessError("Language server already started")

        argv = self.argv()
        env = {**os.environ, **self.config.env}
        log.info("Starting language server: %s", " ".join(argv))

        try:
            self._process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                cwd=self.config.cwd,
            )
        except FileNotFoundError as e:
            raise ProcessError(f"Language server not found: {self.config.command}") from e
        except PermissionError as e:
            raise ProcessError(f"Language server not executable: {self.config.command}") from e
        except OSError as e:
            raise ProcessError(f"Failed to start language server: {e}") from e

        log.info("Language server started (PID: %d)", self._process.pid)
        self._stderr_task = asyncio.create_task(self._pump_stderr())

    async def send(self, message: dict[str, Any]) -> None:
        """Frame a message onto the server's stdin.

        Writes are serialized, so frames reach the server in submission order.

        Raises:
            TransportError: If the process is not running or its stdin is closed.
        """
        data = encode_message(message)

        async with self._write_lock:
            if not self.is_running or self._process is None or self._process.stdin is None:
                raise TransportError("Language server is not running")
            log.log(TRACE, ">> %s", data[:500])
            try:
                self._process.stdin.write(data)
                await self._process.stdin.drain()
            except (BrokenPipeError, ConnectionResetError) as e:
                raise TransportError(f"Language server stdin closed: {e}") from e

    async def messages(self) -> AsyncIterator[dict[str, Any]]:
        """Iterate over decoded server messages until stdout reaches EOF.

        Raises:
            LSPFramingError: If the stdout stream becomes undecodable.
        """
        if self._process is None or self._process.stdout is None:
            return

        while True:
            chunk = await self._process.stdout.read(READ_CHUNK_SIZE)
            if not chunk:
                log.debug("Language server stdout closed")
                return
            log.log(TRACE, "Received %d bytes from language server", len(chunk))
            for message in self._decoder.feed(chunk):
                yield message

    async def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""
        if self._process is None:
            raise ProcessError("Language server was never started")

        returncode = await self._process.wait()
        if returncode < 0:
            log.info("Language server exited on signal %d", -returncode)
        else:
            log.info("Language server exited with code %d", returncode)
        return returncode

    async def terminate(self) -> None:
        """Stop the process: SIGTERM, then SIGKILL after terminate_timeout.

        No LSP shutdown/exit handshake is attempted.
        """
        process = self._process
        if process is None:
            return

        if process.returncode is None:
            log.info("Terminating language server (PID: %d)", process.pid)
            _send_terminate(process)
            try:
                await asyncio.wait_for(process.wait(), timeout=self.config.terminate_timeout)
            except asyncio.TimeoutError:
                log.warning("Language server did not exit after SIGTERM, killing")
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()

        if self._stderr_task is not None:
            self._stderr_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._stderr_task
            self._stderr_task = None

        self._decoder.reset()

    async def _pump_stderr(self) -> None:
        """Forward server stderr to the log, outside the protocol path."""
        assert self._process is not None and self._process.stderr is not None
        stream = self._process.stderr
        while True:
            line = await stream.readline()
            if not line:
                return
            stderr_log.info("%s", line.decode("utf-8", errors="replace").rstrip())


def _send_terminate(process: asyncio.subprocess.Process) -> None:
    """Send terminate signal to process (SIGTERM on Unix, TerminateProcess on Windows)."""
    try:
        if sys.platform == "win32":
            process.terminate()
        else:
            os.kill(process.pid, signal.SIGTERM)
    except ProcessLookupError:
        pass
    except OSError:
        process.terminate()
