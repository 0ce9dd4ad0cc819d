"""Fake collaborators for testing the bridge core without network or database."""

from __future__ import annotations

import contextlib
from collections.abc import Iterator
from typing import Any

from loguru import logger

from discord_bridge.appservice import EventSource, RoomAliasQuery, RoomTimelineEvent
from discord_bridge.registration import Registration, build_registration
from discord_bridge.store import RoomEntry


def make_registration(url: str = "http://localhost:9005") -> Registration:
    """Registration with fresh tokens, as generate_registration would write it."""
    return Registration.from_dict(build_registration(url))


@contextlib.contextmanager
def capture_logs(level: str = "DEBUG") -> Iterator[list[dict[str, Any]]]:
    """Collect loguru records emitted inside the block."""
    records: list[dict[str, Any]] = []
    sink_id = logger.add(lambda m: records.append(m.record), level=level, format="{message}")
    try:
        yield records
    finally:
        logger.remove(sink_id)


def messages(records: list[dict[str, Any]]) -> list[str]:
    return [r["message"] for r in records]


class FakeRoomHandler:
    """Room handler that records calls; optionally fails on alias queries."""

    def __init__(self, *, fail_query: BaseException | None = None) -> None:
        self.fail_query = fail_query
        self.queried: list[str] = []
        self.created: list[tuple[str, str]] = []
        self.bound = False

    async def on_alias_query(self, alias: str) -> dict[str, Any]:
        self.queried.append(alias)
        if self.fail_query is not None:
            raise self.fail_query
        return {"visibility": "public", "name": alias}

    async def on_alias_queried(self, alias: str, room_id: str) -> None:
        self.created.append((alias, room_id))

    def bind_thirdparty(self) -> None:
        self.bound = True


class FakeEventProcessor:
    """Event processor that records what it was given."""

    def __init__(self, *, fail: BaseException | None = None) -> None:
        self.fail = fail
        self.events: list[tuple[dict[str, Any], list[RoomEntry]]] = []

    async def on_event(self, event: dict[str, Any], entries: list[RoomEntry]) -> None:
        if self.fail is not None:
            raise self.fail
        self.events.append((event, entries))


class FakeBridge:
    """BridgeLogic stand-in."""

    def __init__(
        self,
        *,
        init_error: BaseException | None = None,
        run_error: BaseException | None = None,
        room_handler: FakeRoomHandler | None = None,
    ) -> None:
        self.room_handler = room_handler or FakeRoomHandler()
        self.event_processor = FakeEventProcessor()
        self.init_error = init_error
        self.run_error = run_error
        self.calls: list[str] = []

    async def init(self) -> None:
        self.calls.append("init")
        if self.init_error is not None:
            raise self.init_error

    async def run(self) -> None:
        self.calls.append("run")
        if self.run_error is not None:
            raise self.run_error


class FakeStore:
    """In-memory store with the same interface as BridgeStore."""

    def __init__(self, database: dict[str, Any] | None = None, *, init_error: BaseException | None = None) -> None:
        self.database = database or {}
        self.init_error = init_error
        self.initialized = False
        self.closed = False
        self.entries: dict[str, list[RoomEntry]] = {}
        self.lookup_error: BaseException | None = None
        self.users: set[str] = set()
        self.transactions: set[str] = set()

    async def init(self) -> None:
        if self.init_error is not None:
            raise self.init_error
        self.initialized = True

    async def close(self) -> None:
        self.closed = True

    async def get_entries_by_matrix_id(self, matrix_id: str) -> list[RoomEntry]:
        if self.lookup_error is not None:
            raise self.lookup_error
        return list(self.entries.get(matrix_id, []))

    async def is_user_registered(self, user_id: str) -> bool:
        return user_id in self.users

    async def add_registered_user(self, user_id: str) -> None:
        self.users.add(user_id)

    async def is_transaction_completed(self, txn_id: str) -> bool:
        return txn_id in self.transactions

    async def set_transaction_completed(self, txn_id: str) -> None:
        self.transactions.add(txn_id)


class FakeTransport:
    """Transport stand-in with real event sources and no HTTP listener."""

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.port = kwargs.get("port")
        self.storage = kwargs.get("storage")
        self.room_events: EventSource[RoomTimelineEvent] = EventSource("room.event")
        self.room_queries: EventSource[RoomAliasQuery] = EventSource("query.room")
        self.routes: list[tuple[str, str]] = []
        self.begun = False
        self.stopped = False
        self.subscribers_at_begin: tuple[int, int] | None = None

    def add_route(self, method: str, path: str, handler: Any) -> None:
        self.routes.append((method, path))

    async def begin(self) -> None:
        self.subscribers_at_begin = (self.room_queries.subscriber_count, self.room_events.subscriber_count)
        self.begun = True

    async def stop(self) -> None:
        self.stopped = True


def make_bridge(config: Any, transport: Any, store: Any) -> FakeBridge:
    """Bridge logic factory importable as 'tests.mocks:make_bridge'."""
    return FakeBridge()
