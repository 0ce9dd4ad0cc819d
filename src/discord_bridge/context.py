"""Per-process service context handed down from the entrypoint."""

from __future__ import annotations

from dataclasses import dataclass, field

from discord_bridge.logmux import LogMultiplexer
from discord_bridge.metrics import PrometheusBridgeMetrics


@dataclass
class ServiceContext:
    """Shared state for one running bridge: the log multiplexer and the metrics sink.

    metrics is write-once: set_metrics() may be called at most once, any
    component may read it afterwards.
    """

    log_multiplexer: LogMultiplexer = field(default_factory=LogMultiplexer)
    _metrics: PrometheusBridgeMetrics | None = field(default=None, repr=False)

    @property
    def metrics(self) -> PrometheusBridgeMetrics | None:
        return self._metrics

    def set_metrics(self, metrics: PrometheusBridgeMetrics) -> None:
        if self._metrics is not None:
            raise RuntimeError("Metrics already set for this service")
        self._metrics = metrics
