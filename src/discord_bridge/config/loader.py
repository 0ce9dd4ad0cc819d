"""Config loading and the startup validation sequence."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from loguru import logger

from discord_bridge.core.errors import ConfigError

if TYPE_CHECKING:
    from discord_bridge.config.schema import Config


def _deep_update(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge override into base."""
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_update(result[key], value)
        else:
            result[key] = value
    return result


def load_config(path: str | Path) -> dict[str, Any]:
    """Load config from YAML file. Use SafeLoader. Returns raw dict.

    Raises FileNotFoundError when the file is missing and ConfigError when the
    document is not a mapping.
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        logger.error("Failed to parse config {}: {}", path, exc)
        raise
    if not isinstance(data, dict):
        raise ConfigError(
            "Config is not of type object",
            code=ConfigError.NOT_AN_OBJECT,
            details={"path": str(path), "type": type(data).__name__},
        )
    return data


def load_config_with_env(path: str | Path) -> dict[str, Any]:
    """Load config from YAML after loading .env into the process environment."""
    from dotenv import load_dotenv

    load_dotenv()
    return load_config(path)


def load_and_validate(
    path: str | Path,
    *,
    cli_port: int | None = None,
    env: Mapping[str, str] | None = None,
) -> tuple[Config, int]:
    """Parse, overlay and validate config. Returns (Config, effective port).

    Order: parse, mapping check, field application, env overrides, port
    resolution, legacy check. Nothing is opened until all of them pass.
    """
    from discord_bridge.config.schema import Config  # noqa: F811

    data = load_config_with_env(path)
    config = Config()
    config.apply_config(data)
    config.apply_environment_overrides(os.environ if env is None else env)
    port = config.resolve_port(cli_port)
    config.check_legacy()
    return config, port
