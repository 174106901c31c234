"""
LFO - Configuration

Settings are read once from the environment at startup and validated
before the server accepts traffic.
"""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .adapters.local_adapter import DEFAULT_LOCAL_MODEL_ID
from .adapters.gemini_adapter import DEFAULT_CLOUD_MODEL_ID
from .routing.engine import DEFAULT_CONFIDENCE_THRESHOLD, DEFAULT_MAX_LOCAL_TOKENS
from .routing.stats import DEFAULT_RING_SIZE


_TRUE_VALUES = {"1", "true", "yes"}


def _get_int(env: Mapping[str, str], key: str, default: int, minimum: int = 0) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        raise ValueError(f"{key} must be an integer, got {raw!r}")
    if value < minimum:
        raise ValueError(f"{key} must be >= {minimum}, got {value}")
    return value


def _get_bool(env: Mapping[str, str], key: str, default: bool = False) -> bool:
    raw = env.get(key)
    if raw is None:
        return default
    return raw.lower().strip() in _TRUE_VALUES


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration."""

    host: str = "0.0.0.0"
    port: int = 8080

    # Local (on-device) backend
    android_host: str = "127.0.0.1"
    android_port: int = 5555
    local_timeout_ms: int = 30000
    local_model_id: str = DEFAULT_LOCAL_MODEL_ID

    # Cloud backend
    gemini_api_key: str = ""
    gemini_model: str = "gemini-2.0-flash"
    gemini_base_url: str = ""
    cloud_timeout_ms: int = 60000
    cloud_model_id: str = DEFAULT_CLOUD_MODEL_ID

    # Routing
    max_local_tokens: int = DEFAULT_MAX_LOCAL_TOKENS
    default_confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD

    # Bearer gate; None disables it
    auth_token: Optional[str] = None

    # Circuit breakers
    cb_failure_threshold: int = 3
    local_cb_reset_seconds: int = 30
    cloud_cb_reset_seconds: int = 60

    stats_ring_size: int = DEFAULT_RING_SIZE
    use_stub_adapters: bool = False

    # Observability
    log_level: str = "INFO"
    json_logs: bool = True
    otlp_endpoint: Optional[str] = None
    otel_console_export: bool = False

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Raises:
            ValueError: if a numeric variable does not parse
        """
        env = os.environ if environ is None else environ

        return cls(
            host=env.get("HOST") or "0.0.0.0",
            port=_get_int(env, "PORT", 8080, minimum=1),
            android_host=env.get("ANDROID_HOST") or "127.0.0.1",
            android_port=_get_int(env, "ANDROID_PORT", 5555, minimum=1),
            local_timeout_ms=_get_int(env, "LOCAL_TIMEOUT_MS", 30000, minimum=1),
            gemini_api_key=env.get("GEMINI_API_KEY", ""),
            gemini_model=env.get("GEMINI_MODEL") or "gemini-2.0-flash",
            gemini_base_url=env.get("GEMINI_BASE_URL", ""),
            cloud_timeout_ms=_get_int(env, "CLOUD_TIMEOUT_MS", 60000, minimum=1),
            max_local_tokens=_get_int(env, "MAX_LOCAL_TOKENS", DEFAULT_MAX_LOCAL_TOKENS),
            auth_token=env.get("LFO_AUTH_TOKEN") or None,
            cb_failure_threshold=_get_int(env, "CB_FAILURE_THRESHOLD", 3, minimum=1),
            local_cb_reset_seconds=_get_int(env, "LOCAL_CB_RESET_SECONDS", 30),
            cloud_cb_reset_seconds=_get_int(env, "CLOUD_CB_RESET_SECONDS", 60),
            stats_ring_size=_get_int(env, "STATS_RING_SIZE", DEFAULT_RING_SIZE, minimum=1),
            use_stub_adapters=_get_bool(env, "USE_STUB_ADAPTERS"),
            log_level=env.get("LOG_LEVEL") or "INFO",
            json_logs=(env.get("LOG_FORMAT") or "json").lower() == "json",
            otlp_endpoint=env.get("OTEL_EXPORTER_OTLP_ENDPOINT") or None,
            otel_console_export=_get_bool(env, "OTEL_CONSOLE_EXPORT"),
        )

    def validate(self) -> None:
        """Fail closed on configuration the server cannot run with."""
        if not self.use_stub_adapters and not self.gemini_api_key:
            raise RuntimeError(
                "Missing required environment variable: GEMINI_API_KEY "
                "(or set USE_STUB_ADAPTERS=true)"
            )

    @property
    def local_timeout_seconds(self) -> float:
        return self.local_timeout_ms / 1000

    @property
    def cloud_timeout_seconds(self) -> float:
        return self.cloud_timeout_ms / 1000
