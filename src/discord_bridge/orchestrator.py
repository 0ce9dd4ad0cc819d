"""Staged startup: store, transport, metrics, event router, bridge logic."""

from __future__ import annotations

import asyncio
import enum
from collections.abc import Callable
from typing import Any

from loguru import logger

from discord_bridge.appservice import Appservice
from discord_bridge.bridge_logic import BridgeFactory, BridgeLogic, resolve_bridge_factory
from discord_bridge.config import Config
from discord_bridge.context import ServiceContext
from discord_bridge.core.errors import BridgeStartupError, StoreInitError
from discord_bridge.metrics import PrometheusBridgeMetrics
from discord_bridge.registration import Registration
from discord_bridge.router import EventRouter
from discord_bridge.store import BridgeStore


class LifecycleStage(enum.IntEnum):
    """Startup stages, in order. FAILED is terminal."""

    IDLE = 0
    CONFIG_LOADED = 1
    STORE_INITIALIZING = 2
    STORE_READY = 3
    TRANSPORT_CONSTRUCTED = 4
    TRANSPORT_STARTED = 5
    BRIDGE_INITIALIZING = 6
    RUNNING = 7
    FAILED = 99


StoreFactory = Callable[[dict[str, Any]], BridgeStore]
TransportFactory = Callable[..., Appservice]
MetricsFactory = Callable[[], PrometheusBridgeMetrics]


class ServiceOrchestrator:
    """Brings the bridge up one stage at a time.

    Store init and bridge init/run failures are fatal: they are logged, the
    machine moves to FAILED, and StoreInitError / BridgeStartupError is
    raised for the entrypoint to turn into a non-zero exit. An unresolvable
    bridge.logic raises ConfigError from the constructor.
    """

    def __init__(
        self,
        config: Config,
        registration: Registration,
        port: int,
        *,
        context: ServiceContext | None = None,
        store_factory: StoreFactory | None = None,
        transport_factory: TransportFactory | None = None,
        bridge_factory: BridgeFactory | None = None,
        metrics_factory: MetricsFactory | None = None,
    ) -> None:
        self.config = config
        self.registration = registration
        self.port = port
        self.context = context or ServiceContext()
        self._store_factory = store_factory or BridgeStore
        self._transport_factory = transport_factory or Appservice
        # Raises ConfigError before any resource is opened
        self._bridge_factory = bridge_factory or resolve_bridge_factory(config.bridge_logic)
        self._metrics_factory = metrics_factory or PrometheusBridgeMetrics

        self.stage = LifecycleStage.CONFIG_LOADED
        self.failure: tuple[LifecycleStage, BaseException] | None = None
        self.store: BridgeStore | None = None
        self.transport: Appservice | None = None
        self.bridge: BridgeLogic | None = None
        self.router: EventRouter | None = None

    def _advance(self, stage: LifecycleStage) -> None:
        if self.stage is LifecycleStage.FAILED:
            raise RuntimeError(f"Cannot move to {stage.name}: startup already failed")
        if stage <= self.stage:
            raise RuntimeError(f"Cannot move from {self.stage.name} back to {stage.name}")
        logger.debug("Lifecycle: {} -> {}", self.stage.name, stage.name)
        self.stage = stage

    def _fail(self, cause: BaseException) -> None:
        self.failure = (self.stage, cause)
        logger.debug("Lifecycle: {} -> FAILED", self.stage.name)
        self.stage = LifecycleStage.FAILED

    def _constructed(self) -> tuple[BridgeStore, Appservice]:
        if self.store is None or self.transport is None:
            raise RuntimeError("construct() not called")
        return self.store, self.transport

    def construct(self) -> None:
        """Store handle, transport and metrics sink. No I/O."""
        self.store = self._store_factory(self.config.database)
        self.transport = self._transport_factory(
            bind_address=self.config.bind_address,
            homeserver_name=self.config.domain,
            homeserver_url=self.config.homeserver_url,
            port=self.port,
            registration=self.registration,
            storage=self.store,
        )
        if self.config.metrics_enabled:
            logger.info("Enabled metrics")
            self.context.set_metrics(self._metrics_factory().init(self.transport, self.config.metrics))

    async def init_store(self) -> None:
        """Open the store. Fatal on failure; no retry."""
        store, _ = self._constructed()
        self._advance(LifecycleStage.STORE_INITIALIZING)
        try:
            await store.init()
        except Exception as exc:
            logger.opt(exception=exc).error("Failed to init database. Exiting.")
            self._fail(exc)
            raise StoreInitError("Failed to init database", original_error=exc) from exc
        self._advance(LifecycleStage.STORE_READY)

    def build_bridge(self) -> None:
        """Construct the bridge logic and route events to it before the transport starts."""
        store, transport = self._constructed()
        self.bridge = self._bridge_factory(self.config, transport, store)
        room_handler = self.bridge.room_handler
        self.router = EventRouter(
            transport,
            room_handler,
            self.bridge.event_processor,
            store,
            metrics=self.context.metrics,
        )
        self.router.install()
        self._advance(LifecycleStage.TRANSPORT_CONSTRUCTED)
        try:
            room_handler.bind_thirdparty()
        except Exception as exc:
            logger.opt(exception=exc).error("Failed to bind third-party lookups. Exiting")
            self._fail(exc)
            raise BridgeStartupError("Failed to bind third-party lookups", original_error=exc) from exc

    async def start_transport(self) -> None:
        """Begin serving the homeserver."""
        _, transport = self._constructed()
        await transport.begin()
        self._advance(LifecycleStage.TRANSPORT_STARTED)
        logger.info("Started listening on port {}", self.port)

    async def start_bridge(self) -> None:
        """Init and run the bridge logic. Fatal on failure."""
        bridge = self.bridge
        if bridge is None:
            raise RuntimeError("build_bridge() not called")
        self._advance(LifecycleStage.BRIDGE_INITIALIZING)
        try:
            await bridge.init()
            await bridge.run()
        except Exception as exc:
            logger.opt(exception=exc).error("Failure during startup. Exiting")
            self._fail(exc)
            raise BridgeStartupError("Failure during bridge startup", original_error=exc) from exc
        self._advance(LifecycleStage.RUNNING)
        logger.info("Discord bridge started successfully")

    async def start(self) -> None:
        """Run every startup stage in order."""
        try:
            self.construct()
            await self.init_store()
            self.build_bridge()
            await self.start_transport()
            await self.start_bridge()
        except (StoreInitError, BridgeStartupError):
            raise
        except Exception as exc:
            self._fail(exc)
            raise

    async def stop(self) -> None:
        """Detach the router, stop the transport, close the store."""
        if self.router is not None:
            self.router.close()
        if self.transport is not None:
            await self.transport.stop()
        if self.store is not None:
            await self.store.close()

    async def run(self) -> None:
        """start() then serve until cancelled."""
        try:
            await self.start()
            while True:
                await asyncio.sleep(60)
        except asyncio.CancelledError:
            logger.info("Bridge shutting down")
        finally:
            await self.stop()
