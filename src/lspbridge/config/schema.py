"""Configuration schema dataclasses for lspbridge.

Defines the structure of configuration at all levels (system, user, project).
Every field has a default so partial configs merge cleanly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ServerConfig:
    """Bridge server (HTTP + WebSocket) configuration."""

    host: str = "127.0.0.1"
    port: int = 3000
    path: str = "/sysml"  # WebSocket endpoint for LSP traffic
    static_dir: str | None = "dist"  # Served at / when the directory exists


@dataclass
class LanguageServerConfig:
    """Subordinate language server process configuration.

    The flag values are passed through to the process untouched.

    Example config.yaml:
        language_server:
          command: ./syside
          args: [server, --stdio]
          library_path: ./sysml
          line_length: 120
          completion_limit: 100
    """

    command: str = "./syside"
    args: list[str] = field(default_factory=lambda: ["server", "--stdio"])
    library_path: str | None = "./sysml"  # --std
    line_length: int | None = 120  # --line-length
    completion_limit: int | None = 100  # --limit-completions
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None
    terminate_timeout: float = 3.0  # Seconds between SIGTERM and SIGKILL


@dataclass
class SessionConfig:
    """Per-connection session limits and defaults."""

    request_timeout: float = 30.0
    max_message_size: int = 10 * 1024 * 1024
    language_id: str = "sysml"


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # DEBUG, INFO, WARNING, ERROR
    verbose: int | None = None  # 0..4, takes precedence over level
    file: str | None = None  # Log file path


@dataclass
class Config:
    """Root configuration object."""

    server: ServerConfig = field(default_factory=ServerConfig)
    language_server: LanguageServerConfig = field(default_factory=LanguageServerConfig)
    session: SessionConfig = field(default_factory=SessionConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    extra: dict[str, Any] = field(default_factory=dict)  # Unknown top-level keys
