"""Application service registration file: one-shot generation and loading."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from loguru import logger

from discord_bridge.core.constants import BRIDGE_ID, NAMESPACE_PREFIX, PROTOCOL, SENDER_LOCALPART
from discord_bridge.core.errors import ConfigError, RegistrationError


@dataclass
class Registration:
    """Parsed registration, as handed to the transport."""

    as_token: str
    hs_token: str
    id: str
    url: str | None
    sender_localpart: str
    namespaces: dict[str, list[dict[str, Any]]] = field(default_factory=dict)
    protocols: list[str] = field(default_factory=list)
    rate_limited: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Registration:
        return cls(
            as_token=str(data["as_token"]),
            hs_token=str(data["hs_token"]),
            id=str(data.get("id", BRIDGE_ID)),
            url=data.get("url"),
            sender_localpart=str(data.get("sender_localpart", SENDER_LOCALPART)),
            namespaces=data.get("namespaces") or {},
            protocols=list(data.get("protocols") or []),
            rate_limited=bool(data.get("rate_limited", False)),
        )


def build_registration(url: str) -> dict[str, Any]:
    """Registration document with fresh tokens and the fixed namespace claims."""
    return {
        "as_token": str(uuid.uuid4()),
        "hs_token": str(uuid.uuid4()),
        "id": BRIDGE_ID,
        "namespaces": {
            "aliases": [{"exclusive": True, "regex": f"#{NAMESPACE_PREFIX}.*"}],
            "rooms": [],
            "users": [{"exclusive": True, "regex": f"@{NAMESPACE_PREFIX}.*"}],
        },
        "protocols": [PROTOCOL],
        "rate_limited": False,
        "sender_localpart": SENDER_LOCALPART,
        "url": url,
    }


def generate_registration(url: str | None, path: str | Path) -> Path:
    """Write a new registration file. Never overwrites an existing one."""
    path = Path(path)
    if path.exists():
        raise RegistrationError(
            "Not writing new registration file, file already exists",
            code=RegistrationError.ALREADY_EXISTS,
            details={"path": str(path)},
        )
    if not url:
        raise RegistrationError(
            "'url' not given in command line opts, cannot generate registration file",
            code=RegistrationError.MISSING_URL,
        )
    reg = build_registration(url)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(reg, f, sort_keys=True)
    logger.info("Wrote registration file to {}", path)
    return path


def load_registration(path: str | Path) -> Registration:
    """Read the registration file generated earlier."""
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as exc:
        raise ConfigError(
            f"Registration file not found: {path}",
            code=ConfigError.MISSING_REGISTRATION,
            original_error=exc,
        ) from exc
    if not isinstance(data, dict):
        raise ConfigError(
            "Registration is not of type object",
            code=ConfigError.NOT_AN_OBJECT,
            details={"path": str(path)},
        )
    try:
        return Registration.from_dict(data)
    except KeyError as exc:
        raise ConfigError(
            f"Registration file {path} is missing {exc.args[0]}",
            code=ConfigError.INVALID_REGISTRATION,
            original_error=exc,
        ) from exc
