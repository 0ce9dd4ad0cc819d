"""Matrix application service transport."""

from discord_bridge.appservice.events import (
    CreateRoom,
    EventSource,
    RoomAliasQuery,
    RoomTimelineEvent,
    Subscription,
)
from discord_bridge.appservice.server import Appservice, StorageBackend, ThirdpartyHandler

__all__ = [
    "Appservice",
    "CreateRoom",
    "EventSource",
    "RoomAliasQuery",
    "RoomTimelineEvent",
    "StorageBackend",
    "Subscription",
    "ThirdpartyHandler",
]
