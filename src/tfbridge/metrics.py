"""Prometheus metrics for the webhook bridge.

Metrics Defined:
- tfbridge_deliveries_total: Deliveries by event type and final state
- tfbridge_handler_errors_total: Handler failures by error type
- tfbridge_harvested_files_total: Files staged across all harvests
- tfbridge_harvested_bytes_total: Bytes staged across all harvests
- tfbridge_uploads_total: Upload attempts by outcome
- tfbridge_dispatch_duration_seconds: Time spent handling one delivery

Metrics are exposed at the `/metrics` endpoint in Prometheus format.
"""

from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Harvests are sequential remote walks; a large repository can take minutes
DEFAULT_DURATION_BUCKETS = (
    0.1,
    0.5,
    1.0,
    5.0,
    10.0,
    30.0,
    60.0,
    120.0,
    300.0,
    600.0,
)


class BridgeMetrics:
    """Prometheus metrics for webhook dispatch, harvest and upload.

    Attributes:
        registry: The registry metrics are registered in. Tests pass a
            fresh CollectorRegistry to avoid duplicate registration.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else REGISTRY

        self.deliveries_total = Counter(
            "tfbridge_deliveries_total",
            "Webhook deliveries by event type and final dispatch state",
            ["event", "state"],
            registry=self.registry,
        )
        self.handler_errors_total = Counter(
            "tfbridge_handler_errors_total",
            "Handler failures after signature verification",
            ["event", "error_type"],
            registry=self.registry,
        )
        self.harvested_files_total = Counter(
            "tfbridge_harvested_files_total",
            "Files staged by repository harvests",
            registry=self.registry,
        )
        self.harvested_bytes_total = Counter(
            "tfbridge_harvested_bytes_total",
            "Bytes staged by repository harvests",
            registry=self.registry,
        )
        self.uploads_total = Counter(
            "tfbridge_uploads_total",
            "Ingestion uploads by outcome",
            ["outcome"],
            registry=self.registry,
        )
        self.dispatch_duration_seconds = Histogram(
            "tfbridge_dispatch_duration_seconds",
            "Time spent handling a webhook delivery",
            ["event"],
            buckets=DEFAULT_DURATION_BUCKETS,
            registry=self.registry,
        )

    def record_delivery(self, event: str, state: str) -> None:
        """Record the final state of a delivery."""
        self.deliveries_total.labels(event=event or "unknown", state=state).inc()

    def record_handler_error(self, event: str, error_type: str) -> None:
        self.handler_errors_total.labels(event=event, error_type=error_type).inc()

    def record_harvest(self, file_count: int, total_bytes: int) -> None:
        self.harvested_files_total.inc(file_count)
        self.harvested_bytes_total.inc(total_bytes)

    def record_upload(self, outcome: str) -> None:
        self.uploads_total.labels(outcome=outcome).inc()

    def observe_dispatch(self, event: str, duration: float) -> None:
        self.dispatch_duration_seconds.labels(event=event or "unknown").observe(duration)

    def render(self) -> bytes:
        """Render all metrics in the Prometheus text exposition format."""
        return generate_latest(self.registry)
