"""Inbound event types and the subscribable event sources of the transport."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

log = logging.getLogger(__name__)

E = TypeVar("E")

CreateRoom = Callable[[dict[str, Any]], Awaitable[str]]


@dataclass
class RoomAliasQuery:
    """Homeserver asked whether an alias in our namespace exists."""

    alias: str
    create_room: CreateRoom


@dataclass
class RoomTimelineEvent:
    """A room event delivered in an application service transaction."""

    room_id: str
    event: dict[str, Any] = field(default_factory=dict)

    @property
    def event_id(self) -> str | None:
        return self.event.get("event_id")


Handler = Callable[[E], Awaitable[Any]]


class Subscription:
    """Handle returned by EventSource.subscribe(); cancel() detaches the handler."""

    def __init__(self, source: EventSource[Any], handler: Handler[Any]) -> None:
        self._source = source
        self._handler = handler
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if self._active:
            self._source._remove(self._handler)
            self._active = False


class EventSource(Generic[E]):
    """Typed event stream. Handlers are awaited in subscription order."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._handlers: list[Handler[E]] = []

    def subscribe(self, handler: Handler[E]) -> Subscription:
        self._handlers.append(handler)
        return Subscription(self, handler)

    def _remove(self, handler: Handler[E]) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    async def emit(self, evt: E) -> list[Any]:
        """Deliver evt to every handler; a failing handler does not stop the rest."""
        results = []
        for handler in list(self._handlers):
            try:
                results.append(await handler(evt))
            except Exception:
                log.exception("Handler for %s failed", self.name)
                results.append(None)
        return results
