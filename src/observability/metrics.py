"""
LFO - Prometheus Metrics

Metrics collection with the Prometheus client library.

Metrics exposed:
- lfo_requests_total: Counter of finished requests by target and status
- lfo_request_duration_seconds: Histogram of request latency by target
- lfo_routing_decisions_total: Counter of routing decisions by target and reason
- lfo_escalations_total: Counter of local -> cloud escalations by reason
- lfo_tokens_total: Counter of estimated tokens (prompt/completion)
- lfo_circuit_breaker_state: Gauge of circuit breaker state per backend
- lfo_circuit_breaker_trips_total: Counter of breaker trips per backend

Usage:
    from src.observability.metrics import setup_metrics, metrics_endpoint

    metrics = setup_metrics()
    metrics.record_request(target="local", status_code=200, duration_seconds=0.42)

    @app.get("/metrics")
    async def metrics_route():
        return metrics_endpoint(metrics)
"""

import re
from typing import Dict, Optional

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    Info,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST,
)
from fastapi import Response

from .. import __version__


# Gauge encoding: 0 = closed (healthy), 1 = half-open, 2 = open (unhealthy)
CIRCUIT_STATE_VALUES = {
    "closed": 0,
    "half_open": 1,
    "open": 2,
}

# Numbers inside reasons ("tokens_2400_exceeds_1500") would explode label cardinality
_REASON_NUMBER = re.compile(r"_\d.*$")


def reason_label(reason: str) -> str:
    """Reduce a routing reason to its stable prefix (low_confidence, tokens, ...)."""
    return _REASON_NUMBER.sub("", reason) or reason


class MetricsCollector:
    """
    Central metrics collector using Prometheus client.

    Each collector owns its registry, so several app instances (tests)
    never collide on metric names.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize metrics collectors."""
        self.registry = registry if registry is not None else CollectorRegistry()

        # Service info
        self.info = Info(
            "lfo",
            "LFO gateway service information",
            registry=self.registry,
        )
        self.info.info({
            "version": __version__,
            "service": "lfo-gateway",
        })

        self.requests_total = Counter(
            "lfo_requests_total",
            "Total number of finished chat completion requests",
            labelnames=["target", "status"],
            registry=self.registry,
        )

        # Local calls land well under a second; cloud calls can take tens of seconds
        self.request_duration = Histogram(
            "lfo_request_duration_seconds",
            "Request duration in seconds",
            labelnames=["target"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, float("inf")),
            registry=self.registry,
        )

        self.routing_decisions = Counter(
            "lfo_routing_decisions_total",
            "Total routing decisions",
            labelnames=["target", "reason"],
            registry=self.registry,
        )

        self.escalations = Counter(
            "lfo_escalations_total",
            "Local results escalated to cloud",
            labelnames=["reason"],
            registry=self.registry,
        )

        self.tokens_total = Counter(
            "lfo_tokens_total",
            "Estimated tokens",
            labelnames=["target", "type"],  # type = prompt/completion
            registry=self.registry,
        )

        self.circuit_breaker_state = Gauge(
            "lfo_circuit_breaker_state",
            "Circuit breaker state (0=closed, 1=half-open, 2=open)",
            labelnames=["backend"],
            registry=self.registry,
        )

        self.circuit_breaker_trips = Counter(
            "lfo_circuit_breaker_trips_total",
            "Circuit breaker transitions into OPEN",
            labelnames=["backend"],
            registry=self.registry,
        )

    def record_request(
        self,
        target: Optional[str],
        status_code: int,
        duration_seconds: float,
    ):
        """Record a finished request. Requests rejected before routing use target="none"."""
        target_label = target or "none"

        self.requests_total.labels(
            target=target_label,
            status=str(status_code),
        ).inc()

        self.request_duration.labels(target=target_label).observe(duration_seconds)

    def record_tokens(self, target: str, prompt_tokens: int, completion_tokens: int):
        """Record estimated token usage."""
        self.tokens_total.labels(target=target, type="prompt").inc(prompt_tokens)
        self.tokens_total.labels(target=target, type="completion").inc(completion_tokens)

    def record_routing_decision(self, target: str, reason: str):
        """Record a routing decision."""
        self.routing_decisions.labels(
            target=target,
            reason=reason_label(reason),
        ).inc()

    def record_escalation(self, reason: str):
        """Record a local -> cloud escalation."""
        self.escalations.labels(reason=reason_label(reason)).inc()

    def set_circuit_breaker_state(self, backend: str, state: str):
        """Update circuit breaker state gauge."""
        self.circuit_breaker_state.labels(backend=backend).set(CIRCUIT_STATE_VALUES[state])

    def record_circuit_trip(self, backend: str):
        """Record a breaker transition into OPEN."""
        self.circuit_breaker_trips.labels(backend=backend).inc()

    def sample(self, name: str, labels: Optional[Dict[str, str]] = None) -> float:
        """Read one sample value (0.0 when absent)."""
        value = self.registry.get_sample_value(name, labels or {})
        return value if value is not None else 0.0


# Module-level functions for convenience
_metrics_instance: Optional[MetricsCollector] = None


def setup_metrics(registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """
    Setup metrics collection.

    Safe to call multiple times with the same registry - returns the
    existing instance.
    """
    global _metrics_instance

    if (
        _metrics_instance is not None
        and (registry is None or _metrics_instance.registry is registry)
    ):
        return _metrics_instance

    _metrics_instance = MetricsCollector(registry)
    return _metrics_instance


def get_metrics() -> MetricsCollector:
    """Get the metrics collector instance, creating a default one if needed."""
    return setup_metrics()


def metrics_endpoint(collector: Optional[MetricsCollector] = None) -> Response:
    """
    Generate Prometheus metrics endpoint response.

    Usage:
        @app.get("/metrics")
        async def metrics():
            return metrics_endpoint(collector)
    """
    collector = collector or get_metrics()
    content = generate_latest(collector.registry)
    return Response(
        content=content,
        media_type=CONTENT_TYPE_LATEST,
    )
