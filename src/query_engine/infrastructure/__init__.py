"""Infrastructure layer - cross-cutting concerns."""

from query_engine.infrastructure.config import (
    Config,
    ExecutionConfig,
    ObservabilityConfig,
    get_config,
)
from query_engine.infrastructure.logging import (
    bind_query_context,
    clear_query_context,
    configure_logging,
    get_logger,
    setup_logging,
)
from query_engine.infrastructure.metrics import setup_metrics, get_metrics, MetricsRegistry
from query_engine.infrastructure.tracing import (
    configure_tracing,
    get_tracer,
    setup_tracing,
    trace_span,
)

__all__ = [
    "Config",
    "ExecutionConfig",
    "ObservabilityConfig",
    "get_config",
    "setup_logging",
    "get_logger",
    "configure_logging",
    "bind_query_context",
    "clear_query_context",
    "setup_metrics",
    "get_metrics",
    "MetricsRegistry",
    "setup_tracing",
    "get_tracer",
    "configure_tracing",
    "trace_span",
]
