"""Prometheus metrics for the Harbor relay."""

import logging
from typing import Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, generate_latest

logger = logging.getLogger(__name__)


class BridgeMetrics:
    """Prometheus metrics exporter for relay sessions.

    Counters and gauges for session lifecycle, upstream handshakes,
    forwarded audio and buffer evictions.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize Prometheus metrics.

        Args:
            registry: Registry to register with (process default if not given)
        """
        self.registry = registry if registry is not None else REGISTRY

        # Counters
        self.sessions_started_total = Counter(
            "harbor_sessions_started_total",
            "Total number of relay sessions started",
            registry=self.registry,
        )

        self.state_transitions_total = Counter(
            "harbor_state_transitions_total",
            "Session state transitions",
            ["state"],
            registry=self.registry,
        )

        self.handshakes_total = Counter(
            "harbor_handshakes_total",
            "Upstream handshake outcomes",
            ["outcome"],  # accepted, accepted_by_timeout, auth_rejected, mount_rejected, ...
            registry=self.registry,
        )

        self.reconnects_total = Counter(
            "harbor_reconnects_total",
            "Scheduled reconnect attempts",
            registry=self.registry,
        )

        self.bytes_forwarded_total = Counter(
            "harbor_bytes_forwarded_total",
            "Audio bytes written to upstream servers",
            registry=self.registry,
        )

        self.chunks_evicted_total = Counter(
            "harbor_chunks_evicted_total",
            "Audio chunks dropped by the buffer overflow policy",
            registry=self.registry,
        )

        # Gauges
        self.sessions_active = Gauge(
            "harbor_sessions_active",
            "Relay sessions currently registered",
            registry=self.registry,
        )

        logger.info("Relay metrics initialized")

    def record_transition(self, state: str) -> None:
        self.state_transitions_total.labels(state=state).inc()

    def record_handshake(self, outcome: str) -> None:
        self.handshakes_total.labels(outcome=outcome).inc()

    def record_reconnect(self) -> None:
        self.reconnects_total.inc()

    def record_forwarded(self, num_bytes: int) -> None:
        if num_bytes > 0:
            self.bytes_forwarded_total.inc(num_bytes)

    def record_evictions(self, count: int) -> None:
        if count > 0:
            self.chunks_evicted_total.inc(count)

    def session_started(self) -> None:
        self.sessions_started_total.inc()

    def set_active_sessions(self, count: int) -> None:
        self.sessions_active.set(count)

    def export(self) -> bytes:
        """Metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)
