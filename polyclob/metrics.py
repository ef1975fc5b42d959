"""
Prometheus metrics for monitoring.

Each client owns its own CollectorRegistry, so several clients in one
process never share counters.
"""

from typing import Optional
import logging

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

logger = logging.getLogger(__name__)


class Metrics:
    """
    Prometheus metrics collector.

    Tracks:
    - API requests and latency
    - Retries by error class
    - Time spent waiting for quota
    - Channel messages by kind
    - Orders by side and outcome
    """

    def __init__(self, enabled: bool = True, registry: Optional[CollectorRegistry] = None):
        """
        Initialize metrics.

        Args:
            enabled: Enable metrics collection
            registry: Registry to register into (a private one is created if None)
        """
        self.enabled = enabled
        self.registry = registry or CollectorRegistry(auto_describe=True)

        if not self.enabled:
            return

        self.api_requests = Counter(
            'polyclob_api_requests_total',
            'Total API requests',
            ['method', 'endpoint', 'status'],
            registry=self.registry
        )

        self.api_latency = Histogram(
            'polyclob_api_latency_seconds',
            'API request latency',
            ['method', 'endpoint'],
            registry=self.registry
        )

        self.retries = Counter(
            'polyclob_retries_total',
            'Retried attempts',
            ['endpoint', 'error_class'],
            registry=self.registry
        )

        self.quota_wait = Histogram(
            'polyclob_quota_wait_seconds',
            'Time spent waiting for a quota token',
            ['endpoint'],
            registry=self.registry
        )

        self.channel_messages = Counter(
            'polyclob_channel_messages_total',
            'Realtime channel messages received',
            ['channel', 'kind'],
            registry=self.registry
        )

        self.orders_placed = Counter(
            'polyclob_orders_placed_total',
            'Orders submitted',
            ['side', 'status'],
            registry=self.registry
        )

    def track_api_request(self, method: str, endpoint: str, status: str, duration: float) -> None:
        """Record API request and its latency."""
        if self.enabled:
            self.api_requests.labels(method=method, endpoint=endpoint, status=status).inc()
            self.api_latency.labels(method=method, endpoint=endpoint).observe(duration)

    def track_retry(self, endpoint: str, error_class: str) -> None:
        if self.enabled:
            self.retries.labels(endpoint=endpoint, error_class=error_class).inc()

    def track_quota_wait(self, endpoint: str, waited: float) -> None:
        if self.enabled and waited > 0:
            self.quota_wait.labels(endpoint=endpoint).observe(waited)

    def track_channel_message(self, channel: str, kind: str) -> None:
        if self.enabled:
            self.channel_messages.labels(channel=channel, kind=kind).inc()

    def track_order(self, side: str, status: str) -> None:
        """Record order placement."""
        if self.enabled:
            self.orders_placed.labels(side=side, status=status).inc()

    def export(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)
