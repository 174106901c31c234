"""
LFO Core Module

Contains the data models and the canonical error taxonomy.
"""

from .models import (
    # Enums
    Role,
    Mode,
    Target,
    FinishReason,

    # Messages & tools
    Message,
    ToolSpec,
    FunctionCall,

    # Routing
    BackendResult,
    RoutingDecision,
    ChatRequest,
    RequestRecord,

    # Responses
    ChatCompletionResponse,
    LfoMetadata,
    Usage,

    # Serialization
    response_to_dict,
)

from .errors import (
    ErrorKind,
    ErrorDetails,
    LfoException,
    BadRequestError,
    PayloadTooLargeError,
    InvalidTokenError,
    StreamingNotSupportedError,
    BackendError,
    BackendTimeoutError,
    RateLimitedError,
    PermanentAuthOrQuotaError,
    UnreachableError,
    CircuitOpenError,
    UpstreamError,
    TRIPWORTHY_KINDS,
    classify_error,
    is_tripworthy,
)

__all__ = [
    # Models
    "Role",
    "Mode",
    "Target",
    "FinishReason",
    "Message",
    "ToolSpec",
    "FunctionCall",
    "BackendResult",
    "RoutingDecision",
    "ChatRequest",
    "RequestRecord",
    "ChatCompletionResponse",
    "LfoMetadata",
    "Usage",
    "response_to_dict",
    # Errors
    "ErrorKind",
    "ErrorDetails",
    "LfoException",
    "BadRequestError",
    "PayloadTooLargeError",
    "InvalidTokenError",
    "StreamingNotSupportedError",
    "BackendError",
    "BackendTimeoutError",
    "RateLimitedError",
    "PermanentAuthOrQuotaError",
    "UnreachableError",
    "CircuitOpenError",
    "UpstreamError",
    "TRIPWORTHY_KINDS",
    "classify_error",
    "is_tripworthy",
]
