from __future__ import annotations

from typing import Optional

from prometheus_client import CollectorRegistry, Gauge, generate_latest


class Metrics:
    """Prometheus gauges served on GET /metrics."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else CollectorRegistry()
        self.current_block = Gauge(
            "current_block",
            "Current Block on each chain",
            ["chain"],
            registry=self.registry,
        )
        self.monitored_accounts = Gauge(
            "monitored_accounts",
            "Count of monitored accounts",
            registry=self.registry,
        )

    def set_current_block(self, chain: str, block_number: int) -> None:
        self.current_block.labels(chain=chain).set(block_number)

    def set_monitored_accounts(self, count: int) -> None:
        self.monitored_accounts.set(count)

    def render(self) -> bytes:
        return generate_latest(self.registry)
