"""Event router: transport events -> bridge logic handlers, one failure boundary per event."""

from __future__ import annotations

import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from loguru import logger

from discord_bridge.appservice import CreateRoom, RoomAliasQuery, RoomTimelineEvent, Subscription
from discord_bridge.core.errors import EventHandlerError

if TYPE_CHECKING:
    from discord_bridge.appservice import Appservice
    from discord_bridge.bridge_logic import EventProcessor, RoomHandler
    from discord_bridge.metrics import PrometheusBridgeMetrics
    from discord_bridge.store import BridgeStore

ALIAS_QUERY = "query.room"
ROOM_EVENT = "room.event"


class EventRouter:
    """Subscribes to the transport's two event streams and forwards to the bridge logic.

    Install before the transport starts so no event is delivered without a
    handler. Handlers may run interleaved; ordering per room is up to the
    bridge logic and store.
    """

    def __init__(
        self,
        transport: Appservice,
        room_handler: RoomHandler,
        event_processor: EventProcessor,
        store: BridgeStore,
        *,
        metrics: PrometheusBridgeMetrics | None = None,
    ) -> None:
        self._transport = transport
        self._room_handler = room_handler
        self._event_processor = event_processor
        self._store = store
        self._metrics = metrics
        self._subscriptions: list[Subscription] = []

    @property
    def subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions)

    def install(self) -> None:
        """Subscribe both handlers. Call once."""
        self._subscriptions = [
            self._transport.room_queries.subscribe(self._dispatch_alias_query),
            self._transport.room_events.subscribe(self._dispatch_room_event),
        ]
        logger.debug("Event router installed ({} subscriptions)", len(self._subscriptions))

    def close(self) -> None:
        for sub in self._subscriptions:
            sub.cancel()
        self._subscriptions = []

    async def _dispatch_alias_query(self, evt: RoomAliasQuery) -> str | None:
        return await self.on_room_alias_query(evt.alias, evt.create_room)

    async def _dispatch_room_event(self, evt: RoomTimelineEvent) -> None:
        await self.on_room_event(evt.room_id, evt.event)

    @asynccontextmanager
    async def isolate(self, kind: str, **context: Any) -> AsyncIterator[None]:
        """Failure boundary: any exception inside is logged with context and dropped."""
        if self._metrics is not None:
            self._metrics.event_received(kind)
        started = time.monotonic()
        try:
            yield
        except Exception as exc:
            if self._metrics is not None:
                self._metrics.event_failed(kind)
            err = EventHandlerError(
                f'Exception thrown while handling "{kind}" event',
                code=kind,
                details=context,
                original_error=exc,
            )
            logger.opt(exception=exc).error("{} ({})", err, ", ".join(f"{k}={v}" for k, v in context.items()))
        finally:
            if self._metrics is not None:
                self._metrics.observe_event(kind, time.monotonic() - started)

    async def on_room_alias_query(self, alias: str, create_room: CreateRoom) -> str | None:
        """Resolve an alias to a new room. Returns the room id, or None on failure."""
        room_id: str | None = None
        async with self.isolate(ALIAS_QUERY, alias=alias):
            opts = await self._room_handler.on_alias_query(alias)
            room_id = await create_room(opts)
            await self._room_handler.on_alias_queried(alias, room_id)
        return room_id

    async def on_room_event(self, room_id: str, event: dict[str, Any]) -> None:
        """Look up the room's Discord entries and hand the event to the processor."""
        async with self.isolate(ROOM_EVENT, room_id=room_id, event_id=event.get("event_id")):
            entries = await self._store.get_entries_by_matrix_id(room_id)
            await self._event_processor.on_event(event, entries)
