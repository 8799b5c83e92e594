"""Prometheus metrics for the query engine."""

from __future__ import annotations

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram, Info


class MetricsRegistry:
    """Registry of all query engine metrics."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """Initialize metrics registry."""
        self._registry = registry or REGISTRY

        # Binding metrics
        self.binds_total = Counter(
            "query_engine_binds_total",
            "Total number of bind attempts",
            ["status"],  # success, error
            registry=self._registry,
        )

        self.bind_errors_total = Counter(
            "query_engine_bind_errors_total",
            "Total bind failures by error kind",
            ["error"],
            registry=self._registry,
        )

        # Execution metrics
        self.executions_total = Counter(
            "query_engine_executions_total",
            "Total number of plan executions",
            ["status"],  # success, error, cancelled
            registry=self._registry,
        )

        self.execution_errors_total = Counter(
            "query_engine_execution_errors_total",
            "Total execution failures by error kind",
            ["error"],
            registry=self._registry,
        )

        self.rows_emitted_total = Counter(
            "query_engine_rows_emitted_total",
            "Total result rows delivered to callers",
            registry=self._registry,
        )

        self.execution_latency_seconds = Histogram(
            "query_engine_execution_latency_seconds",
            "Time from first pull to stream end in seconds",
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
            registry=self._registry,
        )

        self.info = Info(
            "query_engine",
            "Query engine information",
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry


# Global metrics registry
_metrics: MetricsRegistry | None = None


def setup_metrics(registry: CollectorRegistry | None = None) -> MetricsRegistry:
    """
    Set up the global metrics registry.

    The engine is a library: exposition (an HTTP endpoint or push gateway)
    belongs to the embedding process.

    Args:
        registry: Optional custom registry

    Returns:
        The metrics registry
    """
    global _metrics
    _metrics = MetricsRegistry(registry)

    from query_engine import __version__
    _metrics.info.info({
        "version": __version__,
    })

    return _metrics


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsRegistry()
    return _metrics
