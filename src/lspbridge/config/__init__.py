"""Configuration management for lspbridge.

Provides hierarchical YAML-based configuration with:
- System-level config (/etc/lspbridge/ or %PROGRAMDATA%)
- User-level config (~/.config/lspbridge/ or %APPDATA%)
- Project-level config ($project_root/.lspbridge/)
- An explicit file passed with --config
- Environment variable overrides (highest priority)

Example usage:
    from lspbridge.config import load_config

    config = load_config(project_root="/path/to/project")
    print(config.language_server.command)
    print(config.server.port)
"""

from lspbridge.config.loader import (
    get_config,
    load_config,
    reset_config,
)
from lspbridge.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
from lspbridge.config.schema import (
    Config,
    LanguageServerConfig,
    LoggingConfig,
    ServerConfig,
    SessionConfig,
)

__all__ = [
    # Main API
    "Config",
    "load_config",
    "get_config",
    "reset_config",
    # Schema types
    "ServerConfig",
    "LanguageServerConfig",
    "SessionConfig",
    "LoggingConfig",
    # Path utilities
    "get_config_paths",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
]
