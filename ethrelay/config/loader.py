"""Configuration loader: JSON file plus environment overrides."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ethrelay.config.schema import Config
from ethrelay.core.errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_NAME = "ethrelay.json"


def _split_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


# env var -> (section, field, converter)
_ENV_OVERRIDES: dict[str, tuple[str, str, Any]] = {
    "PORT": ("server", "port", int),
    "MAX_SESSIONS": ("sessions", "max_sessions", int),
    "SESSION_TIMEOUT_MS": ("sessions", "timeout_ms", int),
    "ALLOWED_HOSTS": ("security", "allowed_hosts", _split_list),
    "CORS_ALLOWED_ORIGINS": ("security", "allowed_origins", _split_list),
}


def load_json_file(path: Path) -> dict[str, Any]:
    """Read a JSON object from disk.

    Raises:
        ConfigError: If the file cannot be read, is not JSON, or is not an object.
    """
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Failed to read config file {path}: {e}") from e

    if not content.strip():
        return {}

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")
    return data


def apply_env_overrides(
    data: dict[str, Any],
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Overlay recognised environment variables onto raw config data.

    Returns a new dict; the input is not modified.
    """
    env = os.environ if environ is None else environ
    merged = {
        section: dict(values) if isinstance(values, dict) else values
        for section, values in data.items()
    }

    for var, (section, field, convert) in _ENV_OVERRIDES.items():
        raw = env.get(var)
        if raw is None or raw == "":
            continue
        try:
            value = convert(raw)
        except ValueError as e:
            raise ConfigError(f"Invalid value for {var}: {raw!r}") from e
        target = merged.setdefault(section, {})
        if not isinstance(target, dict):
            continue  # left for schema validation to report
        target[field] = value
        logger.debug("Config override from %s: %s.%s", var, section, field)

    return merged


def load_config(
    path: Path | None = None,
    cwd: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration.

    Resolution order (later wins):
    1. Built-in defaults
    2. The JSON file at ``path``, or ``{cwd}/ethrelay.json`` when it exists
    3. Environment overrides (PORT, MAX_SESSIONS, SESSION_TIMEOUT_MS,
       ALLOWED_HOSTS, CORS_ALLOWED_ORIGINS)

    Args:
        path: Explicit config file. Must exist if given.
        cwd: Directory searched for the default file. Defaults to Path.cwd().
        environ: Environment mapping, for tests. Defaults to os.environ.

    Returns:
        Validated Config object.

    Raises:
        ConfigError: If the file is unreadable or invalid, or the merged
            config fails validation.
    """
    data: dict[str, Any] = {}

    if path is not None:
        if not path.is_file():
            raise ConfigError(f"Config file not found: {path}")
        data = load_json_file(path)
        source = str(path)
    else:
        candidate = (cwd or Path.cwd()) / DEFAULT_CONFIG_NAME
        if candidate.is_file():
            data = load_json_file(candidate)
            source = str(candidate)
        else:
            source = "defaults"

    data = apply_env_overrides(data, environ)

    try:
        config = Config.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Config validation failed ({source}): {e}") from e

    logger.debug("Loaded config from %s", source)
    return config
