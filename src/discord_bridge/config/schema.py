"""Config schema and accessor."""

from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any

import yaml
from loguru import logger

from discord_bridge.config.loader import _deep_update
from discord_bridge.core.constants import (
    DEFAULT_BIND_ADDRESS,
    ENV_KEY_SEPARATOR,
    ENV_PREFIX,
    LEGACY_DATABASE_KEYS,
)
from discord_bridge.core.errors import ConfigError

DEFAULTS: dict[str, Any] = {
    "bridge": {
        "domain": "",
        "homeserverUrl": "",
        "port": None,
        "bindAddress": DEFAULT_BIND_ADDRESS,
        "presenceInterval": 500,
        "disablePresence": False,
        "disableTypingNotifications": False,
        "disableDiscordMentions": False,
        "disableDeletionForwarding": False,
        "enableSelfServiceBridging": False,
        "disablePortalBridging": False,
        "disableReadReceipts": False,
        "disableJoinLeaveNotifications": False,
        "disableInviteNotifications": False,
        "determineCodeLanguage": False,
        "logic": None,
    },
    "auth": {
        "clientID": None,
        "botToken": None,
        "usePrivilegedIntents": False,
    },
    "database": {
        "filename": "discord.db",
        "connString": None,
    },
    "metrics": {
        "enable": False,
        "port": 9001,
        "host": "127.0.0.1",
    },
    "logging": {
        "console": "info",
        "lineDateFormat": "MMM-D HH:mm:ss.SSS",
        "files": [],
    },
}


def _parse_env_value(raw: str) -> Any:
    """Parse an env value as a YAML scalar so '9005' becomes 9005 and 'true' True."""
    try:
        value = yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw
    if value is None or isinstance(value, (dict, list)):
        return raw
    return value


def _match_key(section: dict[str, Any], part: str) -> str:
    """Find an existing key case-insensitively; new keys are lower-cased."""
    lowered = part.lower()
    for key in section:
        if key.lower() == lowered:
            return key
    return lowered


class Config:
    """Config accessor with attribute-style access for nested keys.

    Starts from DEFAULTS, is populated from the parsed file with
    apply_config() and overlaid by apply_environment_overrides(). Treated as
    read-only once the service has started.
    """

    def __init__(self, data: dict[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = copy.deepcopy(DEFAULTS)
        if data:
            self.apply_config(data)

    def apply_config(self, data: Mapping[str, Any]) -> None:
        """Merge a parsed config document over the current values."""
        if not isinstance(data, Mapping):
            raise ConfigError(
                "Config is not of type object",
                code=ConfigError.NOT_AN_OBJECT,
                details={"type": type(data).__name__},
            )
        self._data = _deep_update(self._data, dict(data))

    def apply_environment_overrides(self, env: Mapping[str, str]) -> None:
        """Overlay APPSERVICE_DISCORD_* variables onto the config in place.

        APPSERVICE_DISCORD_BRIDGE__PORT=9005 sets bridge.port to 9005.
        """
        applied = 0
        for name, raw in env.items():
            if not name.startswith(ENV_PREFIX):
                continue
            parts = [p for p in name[len(ENV_PREFIX) :].split(ENV_KEY_SEPARATOR) if p]
            if not parts:
                continue
            section = self._data
            for part in parts[:-1]:
                key = _match_key(section, part)
                if not isinstance(section.get(key), dict):
                    section[key] = {}
                section = section[key]
            section[_match_key(section, parts[-1])] = _parse_env_value(raw)
            applied += 1
        if applied:
            logger.debug("Applied {} config override(s) from environment", applied)

    def resolve_port(self, cli_port: int | None = None) -> int:
        """Effective listen port: CLI value first, then bridge.port."""
        port = cli_port or self.bridge_port
        if not port:
            raise ConfigError(
                "Port not given in command line or config file",
                code=ConfigError.MISSING_PORT,
            )
        return int(port)

    def check_legacy(self) -> None:
        """Refuse configs still carrying the pre-database storage path keys."""
        legacy = {k.lower() for k in LEGACY_DATABASE_KEYS}
        present = [k for k in self.database if k.lower() in legacy]
        if present:
            logger.error(
                "The keys 'roomStorePath' and/or 'userStorePath' is still defined in the config. "
                "Please see docs/bridge-migrations.md for how to migrate."
            )
            raise ConfigError(
                "Bridge has legacy configuration options and is unable to start",
                code=ConfigError.LEGACY_CONFIG,
                details={"keys": present},
            )

    @property
    def raw(self) -> dict[str, Any]:
        """Raw config dict."""
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Get value by dot-separated path (e.g. 'bridge.domain')."""
        parts = key.split(".")
        obj: Any = self._data
        for part in parts:
            if isinstance(obj, dict) and part in obj:
                obj = obj[part]
            else:
                return default
        return obj

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __contains__(self, key: str) -> bool:
        return key in self._data

    @property
    def bridge(self) -> dict[str, Any]:
        return self._data.get("bridge") or {}

    @property
    def bridge_port(self) -> int | None:
        port = self.bridge.get("port")
        return int(port) if port else None

    @property
    def bind_address(self) -> str:
        return str(self.bridge.get("bindAddress") or DEFAULT_BIND_ADDRESS)

    @property
    def domain(self) -> str:
        return str(self.bridge.get("domain") or "")

    @property
    def homeserver_url(self) -> str:
        return str(self.bridge.get("homeserverUrl") or "")

    @property
    def bridge_logic(self) -> str | None:
        """Import path ('module:attribute') of the bridge logic factory."""
        val = self.bridge.get("logic")
        if val and isinstance(val, str) and val.strip():
            return val.strip()
        return None

    @property
    def database(self) -> dict[str, Any]:
        return self._data.get("database") or {}

    @property
    def metrics(self) -> dict[str, Any]:
        return self._data.get("metrics") or {}

    @property
    def metrics_enabled(self) -> bool:
        return bool(self.metrics.get("enable", False))

    @property
    def logging(self) -> dict[str, Any]:
        return self._data.get("logging") or {}
