"""
LFO - API Layer

REST API with an OpenAI-compatible completion endpoint.

Provides:
- Chat completions (non-streaming)
- Model listing
- Dashboard stats
"""

from .models import (
    HealthResponse,
    ModelCard,
    ModelListResponse,
    StatsResponse,
)
from .dependencies import (
    MAX_BODY_BYTES,
    add_standard_headers,
    get_pipeline,
    read_json_body,
)
from .routes import (
    chat_router,
    models_router,
    stats_router,
)


__all__ = [
    # Routers
    "chat_router",
    "models_router",
    "stats_router",
    # Models
    "HealthResponse",
    "ModelCard",
    "ModelListResponse",
    "StatsResponse",
    # Dependencies
    "MAX_BODY_BYTES",
    "add_standard_headers",
    "get_pipeline",
    "read_json_body",
]
