"""
LFO - Observability Module

Observability stack including:
- Prometheus metrics (Counter, Histogram, Gauge)
- OpenTelemetry distributed tracing
- Structured JSON logging with context injection
- W3C trace context propagation

Usage:
    from src.observability import (
        setup_observability,
        get_logger,
        trace_backend_call,
    )

    setup_observability(service_name="lfo")

    logger = get_logger(__name__)
    with trace_backend_call("local", model_id) as span:
        ...
"""

from .metrics import (
    MetricsCollector,
    get_metrics,
    setup_metrics,
    metrics_endpoint,
)
from .tracing import (
    TracingManager,
    setup_tracing,
    trace_backend_call,
)
from .logging import (
    StructuredLogger,
    get_logger,
    setup_logging,
    LogContext,
)
from .middleware import (
    ObservabilityMiddleware,
    setup_observability,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "get_metrics",
    "setup_metrics",
    "metrics_endpoint",
    # Tracing
    "TracingManager",
    "setup_tracing",
    "trace_backend_call",
    # Logging
    "StructuredLogger",
    "get_logger",
    "setup_logging",
    "LogContext",
    # Combined
    "ObservabilityMiddleware",
    "setup_observability",
]
