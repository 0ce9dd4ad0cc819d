"""Interfaces of the bridge logic component and the loader for its factory.

The bridge logic (Discord client, puppeting, message translation) lives
outside this package. It is plugged in through ``bridge.logic`` in the
config: an import path ``"package.module:factory"`` naming a callable
``factory(config, transport, store) -> BridgeLogic``.
"""

from __future__ import annotations

import importlib
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, Protocol

from discord_bridge.core.errors import ConfigError

if TYPE_CHECKING:
    from discord_bridge.appservice import Appservice
    from discord_bridge.config import Config
    from discord_bridge.store import BridgeStore, RoomEntry


class RoomHandler(Protocol):
    """Room-level hooks called by the event router."""

    async def on_alias_query(self, alias: str) -> dict[str, Any]:
        """Return createRoom options for a queried alias; raise to refuse."""
        ...

    async def on_alias_queried(self, alias: str, room_id: str) -> None:
        """Called once the room for an alias exists."""
        ...

    def bind_thirdparty(self) -> None:
        """Register third-party protocol lookups on the transport."""
        ...


class EventProcessor(Protocol):
    """Handles Matrix room events destined for Discord."""

    async def on_event(self, event: dict[str, Any], entries: list[RoomEntry]) -> None: ...


class BridgeLogic(Protocol):
    """The component translating between Matrix and Discord."""

    @property
    def room_handler(self) -> RoomHandler: ...

    @property
    def event_processor(self) -> EventProcessor: ...

    async def init(self) -> None: ...

    async def run(self) -> None: ...


BridgeFactory = Callable[["Config", "Appservice", "BridgeStore"], BridgeLogic]


def resolve_bridge_factory(path: str | None) -> BridgeFactory:
    """Import the factory named by ``module:attribute``."""
    if not path:
        raise ConfigError(
            "bridge.logic is not set; cannot construct the bridge",
            code=ConfigError.INVALID_BRIDGE_LOGIC,
        )
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(
            f"bridge.logic must look like 'module:attribute', got {path!r}",
            code=ConfigError.INVALID_BRIDGE_LOGIC,
            details={"value": path},
        )
    try:
        obj: Any = importlib.import_module(module_name)
        for part in attr.split("."):
            obj = getattr(obj, part)
    except (ImportError, AttributeError) as exc:
        raise ConfigError(
            f"Cannot import bridge logic {path!r}: {exc}",
            code=ConfigError.INVALID_BRIDGE_LOGIC,
            details={"value": path},
            original_error=exc,
        ) from exc
    if not callable(obj):
        raise ConfigError(
            f"bridge.logic {path!r} is not callable",
            code=ConfigError.INVALID_BRIDGE_LOGIC,
            details={"value": path},
        )
    return obj
