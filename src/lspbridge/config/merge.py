"""Deep merge for layered configuration files.

Later layers (user, project, --config, environment) override earlier ones
section by section, so a project file can set only `language_server.command`
and inherit everything else.
"""

from __future__ import annotations

from typing import Any


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries.

    Rules:
    - Nested dicts are merged recursively
    - Lists are replaced entirely (`language_server.args` is never concatenated)
    - None values in override are skipped, leaving the base value in place
    - Anything else is replaced

    Neither input is modified.
    """
    result = dict(base)

    for key, override_value in override.items():
        if override_value is None:
            continue

        base_value = result.get(key)
        if isinstance(base_value, dict) and isinstance(override_value, dict):
            result[key] = deep_merge(base_value, override_value)
        else:
            result[key] = override_value

    return result


def merge_configs(*configs: dict[str, Any]) -> dict[str, Any]:
    """Merge config layers in order (later overrides earlier)."""
    result: dict[str, Any] = {}
    for config in configs:
        if config:
            result = deep_merge(result, config)
    return result
