"""Prometheus metrics collection for the aggregation services."""

from typing import Dict, Any, Optional

import structlog
from prometheus_client import (
    Counter, Histogram, Gauge, Info,
    CollectorRegistry, generate_latest, CONTENT_TYPE_LATEST
)

logger = structlog.get_logger(__name__)

DEFAULT_BUCKETS = [0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0]


class MetricsCollector:
    """Centralized metrics collection for a service."""

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        # Prometheus names only allow [a-zA-Z0-9_:]
        self.prefix = service_name.replace("-", "_").replace(".", "_")
        self.registry = registry or CollectorRegistry()
        self.metrics: Dict[str, Any] = {}

        self._init_common_metrics()

    def _init_common_metrics(self):
        """Initialize common metrics for all services."""
        self.info = Info(
            f"{self.prefix}_info",
            f"Information about {self.service_name}",
            registry=self.registry
        )

        self.messages_processed = Counter(
            f"{self.prefix}_messages_processed_total",
            f"Total number of messages processed by {self.service_name}",
            ["topic", "status"],
            registry=self.registry
        )

        self.processing_duration = Histogram(
            f"{self.prefix}_processing_duration_seconds",
            "Message processing duration in seconds",
            ["topic", "message_type"],
            buckets=DEFAULT_BUCKETS,
            registry=self.registry
        )

        self.errors_total = Counter(
            f"{self.prefix}_errors_total",
            f"Total number of errors in {self.service_name}",
            ["error_type", "component"],
            registry=self.registry
        )

        self.health_status = Gauge(
            f"{self.prefix}_health_status",
            f"Health status of {self.service_name} (1=healthy, 0=unhealthy)",
            registry=self.registry
        )

        self.memory_usage = Gauge(
            f"{self.prefix}_memory_usage_bytes",
            f"Memory usage in bytes for {self.service_name}",
            registry=self.registry
        )

    def create_counter(self, name: str, description: str, labels: Optional[list] = None) -> Counter:
        """Create a custom counter metric."""
        counter = Counter(f"{self.prefix}_{name}", description, labels or [], registry=self.registry)
        self.metrics[name] = counter
        return counter

    def create_histogram(self, name: str, description: str, labels: Optional[list] = None,
                         buckets: Optional[list] = None) -> Histogram:
        """Create a custom histogram metric."""
        histogram = Histogram(
            f"{self.prefix}_{name}", description, labels or [],
            buckets=buckets or DEFAULT_BUCKETS,
            registry=self.registry
        )
        self.metrics[name] = histogram
        return histogram

    def record_message_processed(self, topic: str, status: str, duration: Optional[float] = None,
                                 message_type: Optional[str] = None):
        """Record a message processing metric."""
        self.messages_processed.labels(topic=topic, status=status).inc()
        if duration is not None and message_type is not None:
            self.processing_duration.labels(topic=topic, message_type=message_type).observe(duration)

    def record_error(self, error_type: str, component: str):
        """Record an error metric."""
        self.errors_total.labels(error_type=error_type, component=component).inc()

    def set_health_status(self, healthy: bool):
        """Set the health status metric."""
        self.health_status.set(1 if healthy else 0)

    def set_memory_usage(self, bytes_used: int):
        """Set the memory usage metric."""
        self.memory_usage.set(bytes_used)

    def update_service_info(self, version: str, environment: str, **kwargs):
        """Update service information."""
        self.info.info({
            "version": version,
            "environment": environment,
            **kwargs
        })

    def get_metrics(self) -> bytes:
        """Get all metrics in Prometheus format."""
        return generate_latest(self.registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics."""
        return CONTENT_TYPE_LATEST
