"""Command-line interface for lspbridge."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console
from rich.table import Table

from lspbridge import __version__

if TYPE_CHECKING:
    from lspbridge.client.documents import Problem
    from lspbridge.config.schema import Config

console = Console(stderr=True)

_SEVERITY_STYLES = {
    "error": "bold red",
    "warning": "yellow",
    "info": "cyan",
    "hint": "dim",
}


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="lspbridge",
        description="Bridge WebSocket clients to a stdio language server",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (-v verbose, -vv trace)",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Only log errors",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Config file merged over the system/user/project files",
    )

    subparsers = parser.add_subparsers(dest="mode", help="Operating mode")

    serve_parser = subparsers.add_parser(
        "serve",
        help="Run the WebSocket bridge server",
    )
    serve_parser.add_argument("--host", help="Interface to bind (default from config)")
    serve_parser.add_argument("--port", type=int, help="Port to listen on (default from config)")

    check_parser = subparsers.add_parser(
        "check",
        help="Open one file in a language server session and print its diagnostics",
    )
    check_parser.add_argument("file", type=Path, help="File to check")
    check_parser.add_argument(
        "--url",
        help="Bridge WebSocket URL (e.g. ws://localhost:3000/sysml); "
        "spawns the language server directly when omitted",
    )
    check_parser.add_argument(
        "--language-id",
        help="LSP language id (default from config)",
    )
    check_parser.add_argument(
        "--wait",
        type=float,
        default=5.0,
        help="Seconds to wait for diagnostics (default: 5)",
    )

    return parser


def run_cli(args: Sequence[str]) -> int:
    """Run the CLI with the given arguments."""
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.mode is None:
        parser.print_help()
        return 1

    from lspbridge.config import load_config
    from lspbridge.logging import setup_logging

    config = load_config(config_file=parsed.config)
    if parsed.quiet:
        config.logging.verbose = 0
    elif parsed.verbose:
        config.logging.verbose = min(2 + parsed.verbose, 4)
    setup_logging(config.logging, force_stderr=True)

    if parsed.mode == "serve":
        if parsed.host:
            config.server.host = parsed.host
        if parsed.port:
            config.server.port = parsed.port

        from lspbridge.server.runner import serve

        with contextlib.suppress(KeyboardInterrupt):
            asyncio.run(serve(config))
        return 0
    elif parsed.mode == "check":
        language_id = parsed.language_id or config.session.language_id
        return asyncio.run(run_check(config, parsed.file, parsed.url, language_id, parsed.wait))
    else:
        parser.print_help()
        return 1


async def run_check(
    config: Config,
    path: Path,
    url: str | None,
    language_id: str,
    wait: float,
) -> int:
    """Open `path`, collect its diagnostics and print them.

    Returns:
        0 when clean, 1 when an error was reported, 2 when the session failed.
    """
    from lspbridge.client.session import LanguageSession
    from lspbridge.errors import BridgeError
    from lspbridge.transport.channel import ProcessChannel, WebSocketChannel

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        console.print(f"[red]Error: cannot read {path}: {e}[/red]")
        return 2

    uri = path.resolve().as_uri()
    if url:
        channel = WebSocketChannel(url)
    else:
        channel = ProcessChannel(
            config.language_server,
            max_message_size=config.session.max_message_size,
        )

    session = LanguageSession(channel, request_timeout=config.session.request_timeout)
    published = asyncio.Event()
    session.diagnostics.subscribe(lambda u, _diags: published.set() if u == uri else None)

    try:
        async with session:
            await session.open(uri, language_id, text)
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(published.wait(), timeout=wait)
            problems = session.diagnostics.problems
    except BridgeError as e:
        console.print(f"[red]Error: {e}[/red]")
        return 2

    if not published.is_set():
        console.print(f"[yellow]No diagnostics received within {wait:g}s[/yellow]")

    print_problems(problems)
    return 1 if any(p.severity == "error" for p in problems) else 0


def print_problems(problems: list[Problem]) -> None:
    """Render the problem list as a table."""
    if not problems:
        console.print("[green]No problems found[/green]")
        return

    table = Table(title=f"Problems ({len(problems)})")
    table.add_column("Severity")
    table.add_column("Location")
    table.add_column("Message")
    table.add_column("Code", style="dim")

    for problem in problems:
        style = _SEVERITY_STYLES.get(problem.severity, "")
        table.add_row(
            f"[{style}]{problem.severity}[/{style}]" if style else problem.severity,
            f"{problem.uri}:{problem.line}:{problem.column}",
            problem.message,
            problem.code or "",
        )

    console.print(table)
