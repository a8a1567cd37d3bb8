"""Self-monitoring metrics using prometheus_client."""
import logging

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, write_to_textfile

logger = logging.getLogger(__name__)


class SelfMetrics:
    """Self-monitoring metrics for the fetch engine."""

    def __init__(self, registry=None, prefix=""):
        if registry is None:
            # Custom registry keeps default Python/process metrics out
            registry = CollectorRegistry()
        self.registry = registry

        self.fetch_total = Counter(
            f"{prefix}fetch_total",
            "Total number of metric fetches attempted",
            ["metric_name"],
            registry=registry
        )

        self.fetch_errors_total = Counter(
            f"{prefix}fetch_errors_total",
            "Total number of failed metric fetches",
            ["metric_name", "error"],
            registry=registry
        )

        self.fetch_duration_seconds = Histogram(
            f"{prefix}fetch_duration_seconds",
            "Duration of a single metric fetch in seconds",
            buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
            registry=registry
        )

        self.cycle_duration_seconds = Histogram(
            f"{prefix}cycle_duration_seconds",
            "Duration of a whole fetch cycle in seconds",
            buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
            registry=registry
        )

        self.metrics_reported = Gauge(
            f"{prefix}metrics_reported",
            "Number of metrics reported by the last fetch cycle",
            registry=registry
        )

    def record_fetch(self, metric_name: str, duration: float):
        """Record a fetch attempt and its duration."""
        self.fetch_total.labels(metric_name=metric_name).inc()
        self.fetch_duration_seconds.observe(duration)

    def record_fetch_error(self, metric_name: str, error: str):
        """Record a failed fetch by error type."""
        self.fetch_errors_total.labels(metric_name=metric_name, error=error).inc()

    def record_cycle(self, duration: float, reported: int):
        """Record a completed fetch cycle."""
        self.cycle_duration_seconds.observe(duration)
        self.metrics_reported.set(reported)

    def write_textfile(self, path: str):
        """Write the registry for the node_exporter textfile collector."""
        write_to_textfile(path, self.registry)
        logger.debug(f"Self-metrics written to {path}")
