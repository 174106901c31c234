"""
LFO - Error Definitions

Canonical error taxonomy for backend failures.

Every failure that crosses the HTTP boundary is an LfoException carrying a
stable ErrorKind. The kind decides two things independently:
- the HTTP status / error type shown to the caller
- whether the failure counts against the backend's circuit breaker

Permanent credential or quota failures never trip a breaker: they will not
heal by waiting, and an open breaker would hide the misconfiguration behind
a "backend offline" message.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import httpx


class ErrorKind(str, Enum):
    """Canonical error kinds."""
    BAD_REQUEST = "bad_request"
    PERMANENT_AUTH_OR_QUOTA = "permanent_auth_or_quota"
    RATE_LIMITED = "rate_limited"
    UNREACHABLE = "unreachable"
    CIRCUIT_OPEN = "circuit_open"
    TIMEOUT = "timeout"
    GENERIC = "generic"
    # Raised by the bearer-token gate, never by a backend
    UNAUTHORIZED = "unauthorized"
    NOT_IMPLEMENTED = "not_implemented"


# Kinds that count toward opening a circuit breaker
TRIPWORTHY_KINDS = frozenset({
    ErrorKind.TIMEOUT,
    ErrorKind.RATE_LIMITED,
    ErrorKind.UNREACHABLE,
    ErrorKind.GENERIC,
})


def is_tripworthy(kind: ErrorKind) -> bool:
    """Check if a failure of this kind should count against a breaker."""
    return kind in TRIPWORTHY_KINDS


@dataclass
class ErrorDetails:
    """Full error information for API response."""
    kind: ErrorKind
    message: str
    type: str
    code: str

    # Context fields
    backend: Optional[str] = None
    param: Optional[str] = None
    request_id: str = ""

    # Recovery fields
    retry_after: Optional[int] = None

    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "message": self.message,
            "type": self.type,
            "code": self.code,
            "kind": self.kind.value,
        }

        if self.backend:
            result["backend"] = self.backend
        if self.param:
            result["param"] = self.param
        if self.request_id:
            result["request_id"] = self.request_id
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        if self.details:
            result["details"] = self.details

        return {"error": result}


class LfoException(Exception):
    """Base exception for all LFO errors."""

    def __init__(self, error: ErrorDetails, status_code: int = 500):
        self.error = error
        self.status_code = status_code
        super().__init__(error.message)

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind

    @property
    def tripworthy(self) -> bool:
        return is_tripworthy(self.error.kind)

    @property
    def backend(self) -> Optional[str]:
        return self.error.backend


def _backend_code(backend: Optional[str]) -> str:
    return f"{backend}_error" if backend else "lfo_error"


# ============================================================
# Caller errors
# ============================================================

class BadRequestError(LfoException):
    """Request validation failed. Never attempted against a backend."""

    def __init__(self, message: str, param: str = "", request_id: str = ""):
        super().__init__(
            ErrorDetails(
                kind=ErrorKind.BAD_REQUEST,
                message=message,
                type="invalid_request_error",
                code="invalid_request",
                param=param or None,
                request_id=request_id,
            ),
            status_code=400
        )


class PayloadTooLargeError(LfoException):
    """Request body exceeds the configured limit."""

    def __init__(self, limit_label: str = "2mb"):
        super().__init__(
            ErrorDetails(
                kind=ErrorKind.BAD_REQUEST,
                message=f"Request body exceeds the {limit_label} limit",
                type="invalid_request_error",
                code="payload_too_large",
            ),
            status_code=413
        )


class InvalidTokenError(LfoException):
    """Bearer token missing or wrong."""

    def __init__(self, request_id: str = ""):
        super().__init__(
            ErrorDetails(
                kind=ErrorKind.UNAUTHORIZED,
                message="Invalid or missing bearer token",
                type="authentication_error",
                code="invalid_token",
                request_id=request_id,
            ),
            status_code=401
        )


class StreamingNotSupportedError(LfoException):
    """Streaming responses are not offered."""

    def __init__(self):
        super().__init__(
            ErrorDetails(
                kind=ErrorKind.NOT_IMPLEMENTED,
                message="Streaming is not supported. Set stream: false or omit the field.",
                type="not_implemented",
                code="streaming_not_supported",
            ),
            status_code=501
        )


# ============================================================
# Backend errors
# ============================================================

class BackendError(LfoException):
    """Base class for failures raised by (or on behalf of) a backend."""
    pass


class BackendTimeoutError(BackendError):
    """Backend exceeded its call deadline."""

    def __init__(self, backend: str, timeout_ms: int, request_id: str = ""):
        super().__init__(
            ErrorDetails(
                kind=ErrorKind.TIMEOUT,
                message=f"{backend} timeout after {timeout_ms}ms",
                type="lfo_timeout",
                code=_backend_code(backend),
                backend=backend,
                request_id=request_id,
                details={"timeout_ms": timeout_ms},
            ),
            status_code=504
        )


class RateLimitedError(BackendError):
    """Backend-imposed throttling."""

    def __init__(
        self,
        backend: str,
        message: str = "",
        retry_after: Optional[int] = None,
        upstream_message: Optional[str] = None,
        request_id: str = ""
    ):
        super().__init__(
            ErrorDetails(
                kind=ErrorKind.RATE_LIMITED,
                message=message or f"{backend} rate limit exceeded. Please try again later.",
                type="rate_limit_exceeded",
                code=_backend_code(backend),
                backend=backend,
                request_id=request_id,
                details={"upstream_message": upstream_message} if upstream_message else {},
                retry_after=retry_after,
            ),
            status_code=429
        )


class PermanentAuthOrQuotaError(BackendError):
    """Credential or quota failure. Retrying will not fix it."""

    def __init__(
        self,
        backend: str,
        message: str,
        quota: bool = False,
        upstream_message: Optional[str] = None,
        request_id: str = ""
    ):
        super().__init__(
            ErrorDetails(
                kind=ErrorKind.PERMANENT_AUTH_OR_QUOTA,
                message=message,
                type="quota_exceeded" if quota else "authentication_error",
                code=_backend_code(backend),
                backend=backend,
                request_id=request_id,
                details={"upstream_message": upstream_message} if upstream_message else {},
            ),
            status_code=403 if quota else 401
        )


class UnreachableError(BackendError):
    """Connection-level failure."""

    def __init__(self, backend: str, message: str = "", request_id: str = ""):
        super().__init__(
            ErrorDetails(
                kind=ErrorKind.UNREACHABLE,
                message=message or f"Cannot reach {backend} backend",
                type="service_unavailable",
                code=_backend_code(backend),
                backend=backend,
                request_id=request_id,
            ),
            status_code=503
        )


class CircuitOpenError(BackendError):
    """Synthetic: the backend's breaker refused the call."""

    def __init__(self, backend: str, retry_after: int, request_id: str = ""):
        super().__init__(
            ErrorDetails(
                kind=ErrorKind.CIRCUIT_OPEN,
                message=(
                    f"{backend} circuit breaker is open. Backend assumed unavailable. "
                    f"Will retry in ~{retry_after}s"
                ),
                type="service_unavailable",
                code="circuit_open",
                backend=backend,
                request_id=request_id,
                retry_after=retry_after,
            ),
            status_code=503
        )


class UpstreamError(BackendError):
    """Any other backend failure. Message is passed through."""

    def __init__(
        self,
        backend: str,
        message: str,
        upstream_status: Optional[int] = None,
        request_id: str = ""
    ):
        super().__init__(
            ErrorDetails(
                kind=ErrorKind.GENERIC,
                message=message,
                type="lfo_provider_error",
                code=_backend_code(backend),
                backend=backend,
                request_id=request_id,
                details={"upstream_status": upstream_status} if upstream_status else {},
            ),
            status_code=502
        )


# ============================================================
# Classifier
# ============================================================

def _retry_after_header(response: httpx.Response) -> Optional[int]:
    raw = response.headers.get("retry-after")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def classify_error(
    error: BaseException,
    backend: str,
    timeout_ms: int = 0,
    request_id: str = ""
) -> LfoException:
    """
    Convert a raw backend failure into a canonical LFO exception.

    Already-classified exceptions pass through unchanged; transport
    exceptions are mapped by type, never by message text.
    """
    if isinstance(error, LfoException):
        return error

    # httpx.TimeoutException also covers ConnectTimeout
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return BackendTimeoutError(backend, timeout_ms, request_id)

    if isinstance(error, (httpx.ConnectError, ConnectionError)):
        return UnreachableError(
            backend,
            f"Cannot reach {backend} backend: {error}",
            request_id
        )

    if isinstance(error, httpx.HTTPStatusError):
        status_code = error.response.status_code

        if status_code == 401:
            return PermanentAuthOrQuotaError(
                backend,
                f"{backend} credentials are invalid or revoked",
                quota=False,
                request_id=request_id
            )

        if status_code == 403:
            return PermanentAuthOrQuotaError(
                backend,
                f"{backend} quota exceeded or access denied",
                quota=True,
                request_id=request_id
            )

        if status_code == 429:
            return RateLimitedError(
                backend,
                retry_after=_retry_after_header(error.response),
                request_id=request_id
            )

        return UpstreamError(
            backend,
            f"{backend} HTTP {status_code}: {error.response.reason_phrase}",
            upstream_status=status_code,
            request_id=request_id
        )

    # Conservative default: unknown failures count against the breaker
    return UpstreamError(backend, str(error) or f"{backend} unknown error", request_id=request_id)
