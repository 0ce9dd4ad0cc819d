"""Configuration: YAML + env overlay."""

from discord_bridge.config.loader import _deep_update, load_and_validate, load_config, load_config_with_env
from discord_bridge.config.schema import DEFAULTS, Config

__all__ = [
    "DEFAULTS",
    "Config",
    "_deep_update",
    "load_and_validate",
    "load_config",
    "load_config_with_env",
]
