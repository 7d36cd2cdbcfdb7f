"""Per-channel outcome totals and drain-cycle timing.

Prometheus series (on an instance-owned registry):
  - ``notification_outcomes_total{channel, status}``
  - ``notification_drain_cycle_seconds``
"""

from __future__ import annotations

import logging
from collections import Counter as TallyCounter
from datetime import datetime, timezone
from typing import Any

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

from .delivery import Channel, DeliveryOutcome

logger = logging.getLogger(__name__)


class EngineMetrics:
    """In-process counters mirrored to Prometheus.

    Each instance owns its ``CollectorRegistry`` so several engines can live
    in one process (tests) without duplicate-series errors.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self._outcomes = Counter(
            "notification_outcomes_total",
            "Resolved delivery attempts",
            ["channel", "status"],
            registry=self.registry,
        )
        self._cycle_seconds = Histogram(
            "notification_drain_cycle_seconds",
            "Drain cycle duration",
            registry=self.registry,
        )
        self._sent: TallyCounter[Channel] = TallyCounter()
        self._failed: TallyCounter[Channel] = TallyCounter()
        self.cycles = 0
        self.last_cycle_ms: float | None = None
        self.average_processing_ms = 0.0
        self.last_cycle_at: datetime | None = None

    @property
    def total_sent(self) -> int:
        return sum(self._sent.values())

    @property
    def total_failed(self) -> int:
        return sum(self._failed.values())

    def sent_for(self, channel: Channel) -> int:
        return self._sent[channel]

    def failed_for(self, channel: Channel) -> int:
        return self._failed[channel]

    def record_outcome(self, outcome: DeliveryOutcome) -> None:
        tally = self._sent if outcome.succeeded else self._failed
        tally[outcome.channel] += 1
        self._outcomes.labels(
            channel=outcome.channel.value, status=outcome.status.value
        ).inc()

    def record_cycle(self, duration_seconds: float) -> None:
        duration_ms = duration_seconds * 1000
        self.cycles += 1
        self.last_cycle_ms = duration_ms
        self.last_cycle_at = datetime.now(timezone.utc)
        # Running average, halved toward the newest sample.
        if self.cycles == 1:
            self.average_processing_ms = duration_ms
        else:
            self.average_processing_ms = (self.average_processing_ms + duration_ms) / 2
        self._cycle_seconds.observe(duration_seconds)

    def snapshot(self) -> dict[str, Any]:
        """Flat view suitable for a dashboard hash or JSON endpoint."""
        data: dict[str, Any] = {
            "total_sent": self.total_sent,
            "total_failed": self.total_failed,
            "cycles": self.cycles,
            "avg_processing_ms": round(self.average_processing_ms, 2),
            "last_cycle_ms": (
                round(self.last_cycle_ms, 2) if self.last_cycle_ms is not None else None
            ),
            "last_updated": datetime.now(timezone.utc).isoformat(),
        }
        for channel in Channel:
            data[f"{channel.value}_sent"] = self._sent[channel]
            data[f"{channel.value}_failed"] = self._failed[channel]
        return data

    def render_prometheus(self) -> bytes:
        return generate_latest(self.registry)
