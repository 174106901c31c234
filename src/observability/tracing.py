"""
LFO - OpenTelemetry Distributed Tracing

Distributed tracing with OpenTelemetry.

Features:
- W3C trace context propagation (traceparent header)
- Server span per HTTP request
- Client span per backend call (local device or cloud)
- OTLP exporter support (Jaeger, Tempo, etc.)

Usage:
    from src.observability.tracing import setup_tracing, trace_backend_call

    setup_tracing(otlp_endpoint="http://localhost:4317")  # endpoint optional

    with trace_backend_call("local", "lfo-local-functiongemma") as span:
        result = await backend.invoke(...)
        span.set_attribute("lfo.confidence", result.confidence)
"""

import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Optional

from opentelemetry.context import Context
from opentelemetry.propagate import extract
from opentelemetry.sdk.resources import Resource, SERVICE_NAME, SERVICE_VERSION
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.trace import Span, SpanKind, Status, StatusCode

from .. import __version__


@dataclass
class TraceContext:
    """Trace identifiers of the active span."""
    trace_id: str
    span_id: str
    trace_flags: int = 1

    @classmethod
    def from_span(cls, span: Span) -> "TraceContext":
        """Create TraceContext from a span."""
        ctx = span.get_span_context()
        return cls(
            trace_id=format(ctx.trace_id, "032x"),
            span_id=format(ctx.span_id, "016x"),
            trace_flags=ctx.trace_flags,
        )

    def to_traceparent(self) -> str:
        """Generate W3C traceparent header value."""
        return f"00-{self.trace_id}-{self.span_id}-{self.trace_flags:02x}"


class TracingManager:
    """
    Central tracing manager using OpenTelemetry.

    The manager keeps its own TracerProvider instead of replacing the
    global one, so several app instances can coexist in one process.
    """

    def __init__(
        self,
        service_name: str = "lfo",
        service_version: str = __version__,
        otlp_endpoint: Optional[str] = None,
        console_export: bool = False,
    ):
        """
        Initialize tracing.

        Args:
            service_name: Name of the service
            service_version: Version of the service
            otlp_endpoint: OTLP collector endpoint (e.g., http://localhost:4317)
            console_export: Whether to export spans to console (for debugging)
        """
        self.service_name = service_name
        self.service_version = service_version

        resource = Resource.create({
            SERVICE_NAME: service_name,
            SERVICE_VERSION: service_version,
        })
        self.provider = TracerProvider(resource=resource)

        if otlp_endpoint:
            # Exporter ships in the "otlp" extra; only needed when an endpoint is configured
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
            self.provider.add_span_processor(
                BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint))
            )

        if console_export:
            self.provider.add_span_processor(
                SimpleSpanProcessor(ConsoleSpanExporter())
            )

        self.tracer = self.provider.get_tracer(service_name, service_version)

    def extract_context(self, headers: Dict[str, str]) -> Context:
        """Extract W3C trace context from HTTP headers."""
        normalized = {k.lower(): v for k, v in headers.items()}
        return extract(normalized)

    def start_server_span(
        self,
        name: str,
        headers: Dict[str, str],
        attributes: Optional[Dict[str, Any]] = None,
    ):
        """
        Start a server span with context extraction from headers.

        Use this for incoming HTTP requests.
        """
        return self.tracer.start_as_current_span(
            name,
            kind=SpanKind.SERVER,
            attributes=attributes,
            context=self.extract_context(headers),
        )

    def start_client_span(
        self,
        name: str,
        attributes: Optional[Dict[str, Any]] = None,
    ):
        """
        Start a client span for outgoing requests.

        Use this for calls to backends.
        """
        return self.tracer.start_as_current_span(
            name,
            kind=SpanKind.CLIENT,
            attributes=attributes,
        )


    def shutdown(self):
        """Flush and shutdown the tracer provider."""
        self.provider.shutdown()


# Module-level functions for convenience
_tracing_instance: Optional[TracingManager] = None


def setup_tracing(
    service_name: str = "lfo",
    otlp_endpoint: Optional[str] = None,
    console_export: bool = False,
) -> TracingManager:
    """
    Setup distributed tracing.

    Falls back to OTEL_EXPORTER_OTLP_ENDPOINT / OTEL_CONSOLE_EXPORT when
    the arguments are not given.
    """
    global _tracing_instance

    if otlp_endpoint is None:
        otlp_endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")

    if os.getenv("OTEL_CONSOLE_EXPORT", "").lower() == "true":
        console_export = True

    _tracing_instance = TracingManager(
        service_name=service_name,
        otlp_endpoint=otlp_endpoint,
        console_export=console_export,
    )
    return _tracing_instance


def get_tracing_manager() -> TracingManager:
    """Get the tracing manager instance, creating a non-exporting one if needed."""
    global _tracing_instance
    if _tracing_instance is None:
        _tracing_instance = TracingManager()
    return _tracing_instance


@contextmanager
def trace_backend_call(backend: str, model: str, operation: str = "invoke"):
    """
    Context manager for tracing backend calls.

    Exceptions are recorded on the span and re-raised.
    """
    tracing = get_tracing_manager()

    with tracing.start_client_span(
        name=f"lfo.backend.{operation}",
        attributes={
            "lfo.backend": backend,
            "lfo.model": model,
        },
    ) as span:
        try:
            yield span
        except BaseException as e:
            span.set_status(Status(StatusCode.ERROR, str(e) or type(e).__name__))
            raise
