"""
LFO - Observability Middleware

Unified middleware that combines tracing and logging for every HTTP request.

Features:
- Request ID generation / propagation (X-Request-Id)
- Server span with W3C context propagation
- Structured logging with correlation IDs
- Correlation headers on every response

Per-request Prometheus counters are recorded by the request pipeline,
which knows the routing target; this middleware does not duplicate them.

Usage:
    from src.observability import setup_observability, ObservabilityMiddleware

    setup_observability(service_name="lfo")
    app.add_middleware(ObservabilityMiddleware)
"""

import time
import uuid
from typing import Any, Dict, Optional

from fastapi import Request, Response
from opentelemetry.trace import Status, StatusCode
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from .metrics import setup_metrics
from .tracing import get_tracing_manager, TraceContext, setup_tracing
from .logging import get_logger, LogContext, setup_logging


def new_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:24]}"


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """
    Unified observability middleware.

    All correlation IDs are propagated through the request lifecycle via
    request.state and the LogContext contextvar.
    """

    # Paths to exclude from detailed observability
    EXCLUDE_PATHS = {"/health", "/metrics", "/openapi.json", "/docs", "/redoc"}

    def __init__(
        self,
        app: ASGIApp,
        service_name: str = "lfo",
        exclude_paths: Optional[set] = None,
    ):
        super().__init__(app)
        self.service_name = service_name
        self.exclude_paths = exclude_paths or self.EXCLUDE_PATHS
        self.logger = get_logger("observability.middleware")

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        """Process request with tracing and logging context."""
        headers = dict(request.headers)

        request_id = headers.get("x-request-id", "") or new_request_id()
        request.state.request_id = request_id

        if request.url.path in self.exclude_paths:
            response = await call_next(request)
            response.headers["X-Request-Id"] = request_id
            return response

        tracing = get_tracing_manager()
        start_time = time.perf_counter()

        with tracing.start_server_span(
            name=f"{request.method} {request.url.path}",
            headers=headers,
            attributes={
                "http.method": request.method,
                "http.route": request.url.path,
                "http.scheme": request.url.scheme,
                "lfo.request_id": request_id,
            },
        ) as span:
            trace_ctx = TraceContext.from_span(span)

            log_ctx = LogContext(
                request_id=request_id,
                trace_id=trace_ctx.trace_id,
                span_id=trace_ctx.span_id,
                endpoint=request.url.path,
            )
            LogContext.set_current(log_ctx)

            request.state.trace_id = trace_ctx.trace_id
            request.state.span_id = trace_ctx.span_id
            request.state.log_context = log_ctx

            try:
                response = await call_next(request)
                duration_ms = (time.perf_counter() - start_time) * 1000

                span.set_attribute("http.status_code", response.status_code)
                target = response.headers.get("x-lfo-target")
                if target:
                    span.set_attribute("lfo.target", target)

                if response.status_code >= 500:
                    span.set_status(Status(StatusCode.ERROR, f"HTTP {response.status_code}"))
                elif response.status_code >= 400:
                    # Client errors are not span errors, but we note them
                    span.set_attribute("http.error", True)
                else:
                    span.set_status(Status(StatusCode.OK))

                self._log_request(request, response, duration_ms, target)

                response.headers["X-Request-Id"] = request_id
                response.headers["X-Trace-Id"] = trace_ctx.trace_id
                response.headers["X-Span-Id"] = trace_ctx.span_id
                return response

            except Exception as e:
                duration_ms = (time.perf_counter() - start_time) * 1000

                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))

                self.logger.exception(
                    "Request failed with exception",
                    error=str(e),
                    error_type=type(e).__name__,
                    duration_ms=round(duration_ms, 2),
                )
                raise

            finally:
                LogContext.clear()

    def _log_request(
        self,
        request: Request,
        response: Response,
        duration_ms: float,
        target: Optional[str],
    ):
        """Log request completion."""
        status_code = response.status_code

        log_data = {
            "method": request.method,
            "path": request.url.path,
            "status_code": status_code,
            "duration_ms": round(duration_ms, 2),
            "routed_to": target,
            "client_ip": request.client.host if request.client else None,
        }

        if status_code >= 500:
            self.logger.error("Request completed with server error", **log_data)
        elif status_code >= 400:
            self.logger.warning("Request completed with client error", **log_data)
        else:
            self.logger.info("Request completed", **log_data)


_observability_initialized = False


def setup_observability(
    service_name: str = "lfo",
    otlp_endpoint: Optional[str] = None,
    console_export: bool = False,
    log_level: str = "INFO",
    json_logs: bool = True,
) -> Dict[str, Any]:
    """
    Setup the observability stack (logging, metrics, tracing).

    Call once at application startup. Safe to call multiple times.

    Returns:
        Dict with initialized components
    """
    global _observability_initialized

    # Logging first (other components may log)
    setup_logging(level=log_level, json_output=json_logs)

    result: Dict[str, Any] = {
        "logging": True,
        "metrics": setup_metrics(),
        "tracing": setup_tracing(
            service_name=service_name,
            otlp_endpoint=otlp_endpoint,
            console_export=console_export,
        ),
    }

    if not _observability_initialized:
        get_logger("observability").info(
            "Observability initialized",
            service_name=service_name,
            otlp_endpoint=otlp_endpoint or "none",
        )
        _observability_initialized = True

    return result
