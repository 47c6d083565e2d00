"""
Configuration Loader
~~~~~~~~~~~~~~~~~~~~

Loads and validates governor_config.yaml, merging with defaults.

Sections are merged key by key over ``DEFAULT_CONFIG``; the ``policies``
list replaces the default (empty) list as a whole. Two environment
variables override the file so a sidecar can be pointed elsewhere
without editing it:

    PLYRA_GOVERNOR_DB     storage.db_path
    PLYRA_GOVERNOR_PORT   sidecar.port
"""

from __future__ import annotations

import logging
import os
from collections import Counter
from typing import Any

import yaml
from pydantic import ValidationError

from plyra_governor.config.defaults import DEFAULT_CONFIG
from plyra_governor.config.schema import GovernorConfig
from plyra_governor.exceptions import (
    ConfigFileNotFoundError,
    ConfigValidationError,
)

__all__ = ["load_config", "load_config_from_dict", "ENV_OVERRIDES"]

logger = logging.getLogger(__name__)

# Environment variable -> (section, key)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "PLYRA_GOVERNOR_DB": ("storage", "db_path"),
    "PLYRA_GOVERNOR_PORT": ("sidecar", "port"),
}


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dicts, with override taking precedence."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _check_sections(data: dict[str, Any]) -> None:
    unknown = sorted(str(k) for k in data if k not in DEFAULT_CONFIG)
    if unknown:
        raise ConfigValidationError(
            f"Unknown configuration section(s): {', '.join(unknown)}. "
            f"Known sections: {', '.join(DEFAULT_CONFIG)}"
        )

    for section, default in DEFAULT_CONFIG.items():
        if section not in data or data[section] is None:
            continue
        if isinstance(default, dict) and not isinstance(data[section], dict):
            raise ConfigValidationError(
                f"Section '{section}' must be a mapping, "
                f"got {type(data[section]).__name__}"
            )
        if isinstance(default, list) and not isinstance(data[section], list):
            raise ConfigValidationError(
                f"Section '{section}' must be a list, "
                f"got {type(data[section]).__name__}"
            )

    names = [
        p.get("name") for p in data.get("policies") or () if isinstance(p, dict)
    ]
    duplicates = sorted(n for n, count in Counter(names).items() if n and count > 1)
    if duplicates:
        raise ConfigValidationError(
            f"Duplicate policy name(s) in 'policies': {', '.join(duplicates)}"
        )


def _env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    for var, (section, key) in ENV_OVERRIDES.items():
        value = os.environ.get(var)
        if value:
            logger.debug("Config %s.%s overridden by %s", section, key, var)
            overrides.setdefault(section, {})[key] = value
    return overrides


def _format_errors(exc: ValidationError) -> str:
    lines = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "<root>"
        lines.append(f"  {location}: {error['msg']}")
    return "\n".join(lines)


def load_config(path: str) -> GovernorConfig:
    """
    Load configuration from a YAML file.

    Merges user config with defaults and validates via Pydantic.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        Validated GovernorConfig instance.

    Raises:
        ConfigFileNotFoundError: If the file doesn't exist.
        ConfigValidationError: If the YAML is malformed or fails validation.
    """
    if not os.path.exists(path):
        raise ConfigFileNotFoundError(f"Configuration file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            user_config = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigValidationError(
            f"Invalid YAML in configuration file: {exc}"
        ) from exc

    if not isinstance(user_config, dict):
        raise ConfigValidationError(
            f"Configuration root must be a mapping, got {type(user_config).__name__}"
        )

    logger.debug("Loaded configuration from %s", path)
    return load_config_from_dict(user_config)


def load_config_from_dict(data: dict[str, Any]) -> GovernorConfig:
    """
    Load configuration from a dictionary, merging with defaults.

    Environment overrides from ``ENV_OVERRIDES`` are applied last.

    Raises:
        ConfigValidationError: Unknown or mistyped sections, duplicate
            policy names, or values the schema rejects.
    """
    _check_sections(data)
    cleaned = {k: v for k, v in data.items() if v is not None}
    merged = _deep_merge(_deep_merge(DEFAULT_CONFIG, cleaned), _env_overrides())

    try:
        return GovernorConfig(**merged)
    except ValidationError as exc:
        raise ConfigValidationError(
            f"Configuration validation failed:\n{_format_errors(exc)}"
        ) from exc
