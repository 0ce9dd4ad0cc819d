"""Test the Prometheus metrics sink."""

from prometheus_client import CollectorRegistry

from discord_bridge.metrics import PrometheusBridgeMetrics
from tests.mocks import FakeTransport


class TestInit:
    def test_mounts_default_path(self):
        transport = FakeTransport()

        metrics = PrometheusBridgeMetrics().init(transport, {"enable": True})

        assert isinstance(metrics, PrometheusBridgeMetrics)
        assert transport.routes == [("GET", "/metrics")]

    def test_custom_path(self):
        transport = FakeTransport()

        PrometheusBridgeMetrics().init(transport, {"path": "/_metrics"})

        assert transport.routes == [("GET", "/_metrics")]


class TestCounters:
    def test_counts_by_kind(self):
        # Arrange
        registry = CollectorRegistry()
        metrics = PrometheusBridgeMetrics(registry)

        # Act
        metrics.event_received("room.event")
        metrics.event_received("room.event")
        metrics.event_failed("query.room")
        metrics.observe_event("room.event", 0.02)

        # Assert
        assert registry.get_sample_value("bridge_matrix_events_total", {"kind": "room.event"}) == 2.0
        assert registry.get_sample_value("bridge_matrix_event_failures_total", {"kind": "query.room"}) == 1.0
        assert registry.get_sample_value("bridge_matrix_event_duration_seconds_count", {"kind": "room.event"}) == 1.0

    def test_instances_do_not_share_registry(self):
        a = PrometheusBridgeMetrics()
        b = PrometheusBridgeMetrics()

        a.event_received("room.event")

        assert b.registry.get_sample_value("bridge_matrix_events_total", {"kind": "room.event"}) is None
