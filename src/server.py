"""
LFO - Main API Server

FastAPI application factory for the local-first gateway.
Uses the canonical error layer from src/core/errors.py

Features:
- OpenAI-compatible chat completions with hybrid local/cloud routing
- Per-backend circuit breakers
- Optional bearer-token gate
- In-process stats, Prometheus metrics, OpenTelemetry tracing, JSON logs

Run:
    python -m src.server
    uvicorn src.server:create_app --factory --port 8080
"""

import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .adapters import (
    AdapterConfig,
    GeminiAdapter,
    LocalBackendAdapter,
    StubCloudBackend,
    StubLocalBackend,
)
from .api import chat_router, models_router, stats_router, HealthResponse
from .auth.config import AuthConfig
from .config import Settings
from .core.errors import BadRequestError, LfoException
from .core.models import Target
from .observability import (
    MetricsCollector,
    ObservabilityMiddleware,
    get_logger,
    get_metrics,
    metrics_endpoint,
    setup_observability,
)
from .observability.middleware import new_request_id
from .routing import (
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    PipelineSettings,
    RequestPipeline,
    StatsRecorder,
)


logger = get_logger("server")


# ============================================================
# Wiring
# ============================================================

def build_pipeline(settings: Settings, metrics: Optional[MetricsCollector] = None) -> RequestPipeline:
    """Create backends, breakers and stats from settings."""
    if settings.use_stub_adapters:
        local = StubLocalBackend(model_id=settings.local_model_id)
        cloud = StubCloudBackend(model_id=settings.cloud_model_id)
    else:
        local = LocalBackendAdapter.from_host(
            settings.android_host,
            settings.android_port,
            timeout_seconds=settings.local_timeout_seconds,
            model_id=settings.local_model_id,
        )
        cloud = GeminiAdapter(
            AdapterConfig(
                base_url=settings.gemini_base_url,
                api_key=settings.gemini_api_key,
                model=settings.gemini_model,
                timeout_seconds=settings.cloud_timeout_seconds,
            ),
            model_id=settings.cloud_model_id,
        )

    breakers = CircuitBreakerRegistry(
        configs={
            Target.LOCAL.value: CircuitBreakerConfig(
                failure_threshold=settings.cb_failure_threshold,
                reset_timeout_seconds=settings.local_cb_reset_seconds,
            ),
            Target.CLOUD.value: CircuitBreakerConfig(
                failure_threshold=settings.cb_failure_threshold,
                reset_timeout_seconds=settings.cloud_cb_reset_seconds,
            ),
        }
    )

    return RequestPipeline(
        local=local,
        cloud=cloud,
        breakers=breakers,
        stats=StatsRecorder(capacity=settings.stats_ring_size),
        settings=PipelineSettings(
            max_local_tokens=settings.max_local_tokens,
            local_timeout_ms=settings.local_timeout_ms,
            cloud_timeout_ms=settings.cloud_timeout_ms,
            default_confidence_threshold=settings.default_confidence_threshold,
        ),
        metrics=metrics,
    )


# ============================================================
# Lifespan management
# ============================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log readiness on startup; close backends and flush spans on shutdown."""
    pipeline: RequestPipeline = app.state.pipeline

    logger.info(
        "LFO gateway ready",
        version=__version__,
        local_model=pipeline.local.model_id,
        cloud_model=pipeline.cloud.model_id,
        max_local_tokens=pipeline.settings.max_local_tokens,
        auth_enabled=app.state.auth_config.enabled,
    )

    yield

    snapshot = pipeline.stats.snapshot()
    logger.info(
        "LFO gateway stopping",
        total_requests=snapshot.total_requests,
        total_local=snapshot.total_local,
        total_cloud=snapshot.total_cloud,
        total_errors=snapshot.total_errors,
        circuit_trips=snapshot.circuit_trip_count,
    )

    await pipeline.close()
    if app.state.tracing is not None:
        app.state.tracing.shutdown()


# ============================================================
# Error handlers
# ============================================================

def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "") or new_request_id()


async def lfo_exception_handler(request: Request, exc: LfoException):
    """Render every canonical LFO error in one shape."""
    if not exc.error.request_id:
        exc.error.request_id = _request_id(request)

    headers = {
        "X-Request-Id": exc.error.request_id,
        "X-Error-Kind": exc.error.kind.value,
        "X-Error-Code": exc.error.code,
    }

    if exc.error.retry_after is not None:
        headers["Retry-After"] = str(exc.error.retry_after)

    if exc.error.backend:
        headers["X-LFO-Backend"] = exc.error.backend

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.error.to_dict(),
        headers=headers,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Re-render FastAPI's 422 as a canonical BadRequest."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    error = BadRequestError(
        first.get("msg", "Invalid request"),
        param=location,
        request_id=_request_id(request),
    )
    return await lfo_exception_handler(request, error)


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle routing-level HTTP errors (404, 405) in the LFO error shape."""
    request_id = _request_id(request)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": str(exc.detail),
                "type": "invalid_request_error" if exc.status_code < 500 else "internal_error",
                "code": "http_error",
                "request_id": request_id,
            }
        },
        headers={"X-Request-Id": request_id},
    )


async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions."""
    request_id = _request_id(request)
    logger.error(
        "Unhandled exception",
        error=str(exc),
        error_type=type(exc).__name__,
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "message": "An unexpected error occurred",
                "type": "internal_error",
                "code": "internal_error",
                "request_id": request_id,
            }
        },
        headers={"X-Request-Id": request_id},
    )


# ============================================================
# FastAPI App
# ============================================================

def create_app(
    settings: Optional[Settings] = None,
    pipeline: Optional[RequestPipeline] = None,
    auth_config: Optional[AuthConfig] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Configuration; read from the environment when omitted
        pipeline: Pre-built pipeline (tests inject fakes); built from
            settings when omitted
        auth_config: Bearer gate; derived from settings when omitted

    Raises:
        RuntimeError: settings cannot run (e.g. no GEMINI_API_KEY)
    """
    if pipeline is None or auth_config is None:
        settings = settings or Settings.from_env()
    if pipeline is None:
        settings.validate()
        pipeline = build_pipeline(settings, metrics=get_metrics())
    if auth_config is None:
        auth_config = AuthConfig(token=settings.auth_token)

    app = FastAPI(
        title="LFO",
        description="Local-first gateway - on-device inference with cloud escalation",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.state.pipeline = pipeline
    app.state.auth_config = auth_config
    # Set by main() when exporters are configured; flushed on shutdown
    app.state.tracing = None

    app.add_middleware(ObservabilityMiddleware, service_name="lfo")

    app.include_router(chat_router)
    app.include_router(models_router)
    app.include_router(stats_router)

    app.add_exception_handler(LfoException, lfo_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Liveness check. Does not probe the backends."""
        return HealthResponse(timestamp=int(time.time()), version=__version__)

    @app.get("/metrics")
    async def prometheus_metrics():
        """
        Prometheus metrics endpoint.

        Exposes all collected metrics in Prometheus text format.
        """
        return metrics_endpoint(pipeline.metrics)

    return app


# ============================================================
# Run server
# ============================================================

def main():
    """Console entry point: configure observability and serve."""
    import uvicorn

    settings = Settings.from_env()
    observability = setup_observability(
        service_name="lfo",
        otlp_endpoint=settings.otlp_endpoint,
        console_export=settings.otel_console_export,
        log_level=settings.log_level,
        json_logs=settings.json_logs,
    )

    app = create_app(settings)
    app.state.tracing = observability["tracing"]

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
