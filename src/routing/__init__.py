"""
LFO - Routing Module

Hybrid local/cloud request routing with:
- Token pre-filter and confidence-based escalation
- Per-backend circuit breakers
- In-process request statistics
"""

from .circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    CircuitState,
    Admission,
)
from .engine import (
    DEFAULT_CONFIDENCE,
    DEFAULT_CONFIDENCE_THRESHOLD,
    DEFAULT_MAX_LOCAL_TOKENS,
    determine_initial_routing,
    estimate_completion_tokens,
    estimate_tokens,
    evaluate_confidence_routing,
    resolve_mode,
)
from .stats import StatsRecorder, StatsSnapshot
from .pipeline import PipelineSettings, RequestPipeline, validate_request

__all__ = [
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerRegistry",
    "CircuitState",
    "Admission",
    # Engine
    "DEFAULT_CONFIDENCE",
    "DEFAULT_CONFIDENCE_THRESHOLD",
    "DEFAULT_MAX_LOCAL_TOKENS",
    "determine_initial_routing",
    "estimate_completion_tokens",
    "estimate_tokens",
    "evaluate_confidence_routing",
    "resolve_mode",
    # Stats
    "StatsRecorder",
    "StatsSnapshot",
    # Pipeline
    "PipelineSettings",
    "RequestPipeline",
    "validate_request",
]
