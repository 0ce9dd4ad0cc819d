"""Application service transport: HTTP listener for the homeserver plus a small client."""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import aiohttp
from aiohttp import web

from discord_bridge.appservice.events import EventSource, RoomAliasQuery, RoomTimelineEvent
from discord_bridge.core.errors import HomeserverError
from discord_bridge.registration import Registration

log = logging.getLogger(__name__)

PATH_PREFIXES = ("", "/_matrix/app/v1")


class StorageBackend(Protocol):
    """Persistence the transport needs: ghost registrations and seen transactions."""

    async def is_user_registered(self, user_id: str) -> bool: ...
    async def add_registered_user(self, user_id: str) -> None: ...
    async def is_transaction_completed(self, txn_id: str) -> bool: ...
    async def set_transaction_completed(self, txn_id: str) -> None: ...


class ThirdpartyHandler(Protocol):
    """Third-party network lookups exposed to Matrix clients."""

    async def get_protocol(self) -> dict[str, Any]: ...
    async def get_location(self, fields: dict[str, str]) -> list[dict[str, Any]]: ...
    async def get_user(self, fields: dict[str, str]) -> list[dict[str, Any]]: ...


def _matrix_error(status: int, errcode: str, error: str) -> web.Response:
    return web.json_response({"errcode": errcode, "error": error}, status=status)


class Appservice:
    """Listens for homeserver pushes and emits them as typed events.

    Subscribe to ``room_events`` and ``room_queries`` before calling begin().
    """

    def __init__(
        self,
        *,
        bind_address: str,
        homeserver_name: str,
        homeserver_url: str,
        port: int,
        registration: Registration,
        storage: StorageBackend | None = None,
    ) -> None:
        self.bind_address = bind_address
        self.homeserver_name = homeserver_name
        self.homeserver_url = homeserver_url.rstrip("/")
        self.port = port
        self.registration = registration
        self.storage = storage
        self.room_events: EventSource[RoomTimelineEvent] = EventSource("room.event")
        self.room_queries: EventSource[RoomAliasQuery] = EventSource("query.room")
        self._thirdparty: dict[str, ThirdpartyHandler] = {}
        self._user_patterns = [
            re.compile(ns["regex"]) for ns in registration.namespaces.get("users", []) if ns.get("regex")
        ]
        self._app = web.Application()
        self._runner: web.AppRunner | None = None
        self._session: aiohttp.ClientSession | None = None
        self._setup_routes()

    @property
    def app(self) -> web.Application:
        return self._app

    @property
    def bot_user_id(self) -> str:
        return f"@{self.registration.sender_localpart}:{self.homeserver_name}"

    def _setup_routes(self) -> None:
        for prefix in PATH_PREFIXES:
            self._app.router.add_put(f"{prefix}/transactions/{{txn_id}}", self._on_transaction)
            self._app.router.add_get(f"{prefix}/rooms/{{alias}}", self._on_room_query)
            self._app.router.add_get(f"{prefix}/users/{{user_id}}", self._on_user_query)
            self._app.router.add_get(f"{prefix}/thirdparty/protocol/{{protocol}}", self._on_thirdparty_protocol)
            self._app.router.add_get(f"{prefix}/thirdparty/location/{{protocol}}", self._on_thirdparty_location)
            self._app.router.add_get(f"{prefix}/thirdparty/user/{{protocol}}", self._on_thirdparty_user)

    def add_route(self, method: str, path: str, handler: Callable[[web.Request], Awaitable[web.StreamResponse]]) -> None:
        """Mount an extra (unauthenticated) route, e.g. /metrics. Only before begin()."""
        self._app.router.add_route(method, path, handler)

    def register_thirdparty(self, protocol: str, handler: ThirdpartyHandler) -> None:
        self._thirdparty[protocol] = handler

    def is_namespaced_user(self, user_id: str) -> bool:
        return any(p.fullmatch(user_id) for p in self._user_patterns)

    async def begin(self) -> None:
        """Start serving on bind_address:port."""
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.bind_address, self.port)
        await site.start()
        log.info("Appservice listening on %s:%s", self.bind_address, self.port)

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        if self._session is not None:
            await self._session.close()
            self._session = None

    # Homeserver -> appservice

    def _authorized(self, request: web.Request) -> web.Response | None:
        token = request.query.get("access_token")
        auth = request.headers.get("Authorization", "")
        if auth.startswith("Bearer "):
            token = auth[len("Bearer ") :]
        if not token:
            return _matrix_error(401, "M_UNAUTHORIZED", "Missing access token")
        if token != self.registration.hs_token:
            return _matrix_error(403, "M_FORBIDDEN", "Bad token supplied")
        return None

    async def _on_transaction(self, request: web.Request) -> web.Response:
        if (denied := self._authorized(request)) is not None:
            return denied
        txn_id = request.match_info["txn_id"]
        if self.storage is not None and await self.storage.is_transaction_completed(txn_id):
            log.debug("Transaction %s already processed", txn_id)
            return web.json_response({})
        try:
            body = await request.json()
        except ValueError:
            return _matrix_error(400, "M_NOT_JSON", "Body is not JSON")
        if not isinstance(body, dict):
            return _matrix_error(400, "M_BAD_JSON", "Body must be a JSON object")
        events = body.get("events") or []
        if not isinstance(events, list) or not all(isinstance(e, dict) for e in events):
            return _matrix_error(400, "M_BAD_JSON", "events must be a list of objects")
        log.debug("Processing transaction %s (%d events)", txn_id, len(events))
        for event in events:
            room_id = event.get("room_id")
            if not room_id:
                continue
            await self.room_events.emit(RoomTimelineEvent(room_id=room_id, event=event))
        if self.storage is not None:
            await self.storage.set_transaction_completed(txn_id)
        return web.json_response({})

    async def _on_room_query(self, request: web.Request) -> web.Response:
        if (denied := self._authorized(request)) is not None:
            return denied
        alias = request.match_info["alias"]
        created: list[str] = []

        async def create_room(opts: dict[str, Any]) -> str:
            room_id = await self.create_room_for_alias(alias, opts)
            created.append(room_id)
            return room_id

        await self.room_queries.emit(RoomAliasQuery(alias=alias, create_room=create_room))
        if created:
            return web.json_response({})
        return _matrix_error(404, "M_NOT_FOUND", "Room not found")

    async def _on_user_query(self, request: web.Request) -> web.Response:
        if (denied := self._authorized(request)) is not None:
            return denied
        user_id = request.match_info["user_id"]
        if not self.is_namespaced_user(user_id):
            return _matrix_error(404, "M_NOT_FOUND", "User not found")
        try:
            await self.ensure_registered(user_id)
        except HomeserverError as exc:
            log.warning("Could not register %s: %s (%s)", user_id, exc, exc.code)
            return _matrix_error(500, "M_UNKNOWN", "Could not register user")
        return web.json_response({})

    async def _on_thirdparty_protocol(self, request: web.Request) -> web.Response:
        if (denied := self._authorized(request)) is not None:
            return denied
        handler = self._thirdparty.get(request.match_info["protocol"])
        if handler is None:
            return _matrix_error(404, "M_NOT_FOUND", "Unknown protocol")
        return web.json_response(await handler.get_protocol())

    async def _on_thirdparty_location(self, request: web.Request) -> web.Response:
        if (denied := self._authorized(request)) is not None:
            return denied
        handler = self._thirdparty.get(request.match_info["protocol"])
        if handler is None:
            return _matrix_error(404, "M_NOT_FOUND", "Unknown protocol")
        return web.json_response(await handler.get_location(dict(request.query)))

    async def _on_thirdparty_user(self, request: web.Request) -> web.Response:
        if (denied := self._authorized(request)) is not None:
            return denied
        handler = self._thirdparty.get(request.match_info["protocol"])
        if handler is None:
            return _matrix_error(404, "M_NOT_FOUND", "Unknown protocol")
        return web.json_response(await handler.get_user(dict(request.query)))

    # Appservice -> homeserver

    def _client(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Authorization": f"Bearer {self.registration.as_token}"},
                timeout=aiohttp.ClientTimeout(total=30),
            )
        return self._session

    async def _request(self, method: str, path: str, body: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self.homeserver_url}{path}"
        async with self._client().request(method, url, json=body) as resp:
            try:
                data = await resp.json(content_type=None)
            except ValueError:
                data = None
            if resp.status >= 400:
                log.warning("%s %s failed: %s %s", method, path, resp.status, data)
                errcode = data.get("errcode") if isinstance(data, dict) else None
                raise HomeserverError(
                    f"{method} {path} failed with {resp.status}",
                    status=resp.status,
                    code=errcode,
                    details={"body": data},
                )
            return data or {}

    async def create_room_for_alias(self, alias: str, opts: dict[str, Any]) -> str:
        """Create the room answering an alias query; returns its room id."""
        body = dict(opts)
        if "room_alias_name" not in body:
            body["room_alias_name"] = alias[1:].split(":", 1)[0]
        data = await self._request("POST", "/_matrix/client/v3/createRoom", body)
        room_id = str(data["room_id"])
        log.info("Created %s for alias %s", room_id, alias)
        return room_id

    async def ensure_registered(self, user_id: str) -> None:
        """Register a ghost user with the homeserver once."""
        if self.storage is not None and await self.storage.is_user_registered(user_id):
            return
        localpart = user_id[1:].split(":", 1)[0]
        try:
            await self._request(
                "POST",
                "/_matrix/client/v3/register",
                {"type": "m.login.application_service", "username": localpart},
            )
        except HomeserverError as exc:
            if exc.status != 400 or exc.code != "M_USER_IN_USE":
                raise
            log.debug("Register %s: M_USER_IN_USE", user_id)
        if self.storage is not None:
            await self.storage.add_registered_user(user_id)
