"""Prometheus metrics for the bridge, served from the appservice listener."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from aiohttp import web
from loguru import logger
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest

if TYPE_CHECKING:
    from discord_bridge.appservice import Appservice


class PrometheusBridgeMetrics:
    """Bridge counters on a private registry so tests can build as many as they like."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.matrix_events = Counter(
            "bridge_matrix_events_total",
            "Inbound events from the homeserver",
            ["kind"],
            registry=self.registry,
        )
        self.matrix_event_failures = Counter(
            "bridge_matrix_event_failures_total",
            "Inbound events whose handler failed",
            ["kind"],
            registry=self.registry,
        )
        self.matrix_event_duration = Histogram(
            "bridge_matrix_event_duration_seconds",
            "Time spent handling an inbound event",
            ["kind"],
            buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
            registry=self.registry,
        )

    def init(self, transport: Appservice, settings: dict[str, Any]) -> PrometheusBridgeMetrics:
        """Mount the scrape endpoint on the transport. Returns self."""
        path = str(settings.get("path") or "/metrics")
        transport.add_route("GET", path, self._handle_scrape)
        logger.info("Metrics available at {}", path)
        return self

    async def _handle_scrape(self, request: web.Request) -> web.Response:
        body = generate_latest(self.registry)
        return web.Response(body=body, headers={"Content-Type": CONTENT_TYPE_LATEST})

    def event_received(self, kind: str) -> None:
        self.matrix_events.labels(kind=kind).inc()

    def event_failed(self, kind: str) -> None:
        self.matrix_event_failures.labels(kind=kind).inc()

    def observe_event(self, kind: str, seconds: float) -> None:
        self.matrix_event_duration.labels(kind=kind).observe(seconds)

