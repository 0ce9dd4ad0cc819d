"""Fixed identifiers for the bridge and its registration."""

from __future__ import annotations

DEFAULT_CONFIG_PATH = "config.yaml"
DEFAULT_REGISTRATION_PATH = "discord-registration.yaml"
DEFAULT_BIND_ADDRESS = "0.0.0.0"

BRIDGE_ID = "discord-bridge"
PROTOCOL = "discord"
NAMESPACE_PREFIX = "_discord_"
SENDER_LOCALPART = "_discord_bot"

# Prefix for environment variables that override config keys
ENV_PREFIX = "APPSERVICE_DISCORD_"
ENV_KEY_SEPARATOR = "__"

# Config keys from the pre-database storage layout; refuse to start with them
LEGACY_DATABASE_KEYS = ("roomStorePath", "userStorePath")
