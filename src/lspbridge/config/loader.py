"""Configuration file loading and caching.

Handles:
- YAML file parsing
- Environment variable overrides
- Config caching with reset support
- Conversion from dict to typed Config dataclass
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from lspbridge.config.merge import merge_configs
from lspbridge.config.paths import get_config_paths
from lspbridge.config.schema import (
    Config,
    LanguageServerConfig,
    LoggingConfig,
    ServerConfig,
    SessionConfig,
)

# Module logger (may not be configured yet at import time)
_log = logging.getLogger("lspbridge.config")

# Global cached config
_cached_config: Config | None = None

_KNOWN_KEYS = {"server", "language_server", "session", "logging"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or invalid.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML as dict, or empty dict on error.
    """
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


def env_overrides() -> dict[str, Any]:
    """Build config dict from environment variables.

    Environment variables take highest priority.
    PORT is honoured for compatibility with hosting platforms; LSPBRIDGE_PORT wins.

    Returns:
        Config dict with values from environment.
    """
    overrides: dict[str, Any] = {}

    log_path = os.environ.get("LSPBRIDGE_LOG")
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    port = os.environ.get("LSPBRIDGE_PORT") or os.environ.get("PORT")
    if port:
        try:
            overrides.setdefault("server", {})["port"] = int(port)
        except ValueError:
            _log.warning("Ignoring non-numeric port from environment: %r", port)

    command = os.environ.get("LSPBRIDGE_SERVER_COMMAND")
    if command:
        overrides.setdefault("language_server", {})["command"] = command

    return overrides


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert merged dict to typed Config dataclass.

    Missing keys fall back to the dataclass defaults.

    Args:
        data: Merged configuration dictionary.

    Returns:
        Typed Config object.
    """
    server_defaults = ServerConfig()
    server_data = _section(data, "server")
    server = ServerConfig(
        host=server_data.get("host", server_defaults.host),
        port=int(server_data.get("port", server_defaults.port)),
        path=server_data.get("path", server_defaults.path),
        static_dir=server_data.get("static_dir", server_defaults.static_dir),
    )

    ls_defaults = LanguageServerConfig()
    ls_data = _section(data, "language_server")
    language_server = LanguageServerConfig(
        command=ls_data.get("command", ls_defaults.command),
        args=[str(a) for a in ls_data.get("args", ls_defaults.args)],
        library_path=ls_data.get("library_path", ls_defaults.library_path),
        line_length=ls_data.get("line_length", ls_defaults.line_length),
        completion_limit=ls_data.get("completion_limit", ls_defaults.completion_limit),
        env={str(k): str(v) for k, v in _section(ls_data, "env").items()},
        cwd=ls_data.get("cwd"),
        terminate_timeout=float(
            ls_data.get("terminate_timeout", ls_defaults.terminate_timeout)
        ),
    )

    session_defaults = SessionConfig()
    session_data = _section(data, "session")
    session = SessionConfig(
        request_timeout=float(
            session_data.get("request_timeout", session_defaults.request_timeout)
        ),
        max_message_size=int(
            session_data.get("max_message_size", session_defaults.max_message_size)
        ),
        language_id=session_data.get("language_id", session_defaults.language_id),
    )

    log_data = _section(data, "logging")
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=log_data.get("verbose"),
        file=log_data.get("file"),
    )

    extra = {k: v for k, v in data.items() if k not in _KNOWN_KEYS}

    return Config(
        server=server,
        language_server=language_server,
        session=session,
        logging=logging_config,
        extra=extra,
    )


def load_config(
    project_root: str | None = None,
    config_file: Path | None = None,
    reload: bool = False,
) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Explicit config file (--config)
    3. Project config ($project_root/.lspbridge/config.yaml)
    4. User config (~/.config/lspbridge/config.yaml or %APPDATA%)
    5. System config (/etc/lspbridge/ or %PROGRAMDATA%)

    Args:
        project_root: Project directory for project-level config.
        config_file: Explicit config file, merged above the discovered ones.
        reload: Force reload even if cached.

    Returns:
        Merged Config object.
    """
    global _cached_config

    is_global = project_root is None and config_file is None
    if _cached_config is not None and not reload and is_global:
        return _cached_config

    configs: list[dict[str, Any]] = []

    paths = get_config_paths(project_root)
    if config_file is not None:
        paths.append(config_file)

    # Load file configs in order (system -> user -> project -> explicit)
    for path in paths:
        config_data = load_yaml_file(path)
        if config_data:
            _log.debug("Loaded config from %s", path)
            configs.append(config_data)

    env_config = env_overrides()
    if env_config:
        configs.append(env_config)

    config = dict_to_config(merge_configs(*configs))

    # Cache only the global config
    if is_global:
        _cached_config = config

    return config


def get_config() -> Config:
    """Get the cached global config, loading it if needed."""
    global _cached_config
    if _cached_config is None:
        return load_config()
    return _cached_config


def reset_config() -> None:
    """Reset cached config.

    Useful for testing or forcing a reload.
    """
    global _cached_config
    _cached_config = None
