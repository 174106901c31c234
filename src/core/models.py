"""
LFO - Core Data Models

Backend-neutral data models shared by the routing engine, the pipeline
and the backend adapters.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


# ============================================================
# Enums
# ============================================================

class Role(str, Enum):
    """Message roles."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class Mode(str, Enum):
    """Caller-selected routing mode."""
    AUTO = "auto"
    LOCAL = "local"
    CLOUD = "cloud"


class Target(str, Enum):
    """Backend a request is routed to."""
    LOCAL = "local"
    CLOUD = "cloud"


class FinishReason(str, Enum):
    """Completion finish reasons."""
    STOP = "stop"


# ============================================================
# Messages & Tools
# ============================================================

@dataclass(frozen=True)
class Message:
    """A single conversation turn."""
    role: Role
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class ToolSpec:
    """
    Tool definition passed through to backends.

    Accepts both the nested OpenAI shape
    ({"type": "function", "function": {...}}) and the flat shape
    ({"name": ..., "description": ..., "parameters": {...}}).
    """
    name: str
    description: str = ""
    parameters: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> ToolSpec:
        definition = raw
        if raw.get("type") == "function" and isinstance(raw.get("function"), dict):
            definition = raw["function"]
        return cls(
            name=definition.get("name") or "",
            description=definition.get("description") or "",
            parameters=definition.get("parameters") or {},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


@dataclass(frozen=True)
class FunctionCall:
    """Function call returned by a backend."""
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "arguments": self.arguments}


# ============================================================
# Backend results & routing
# ============================================================

@dataclass(frozen=True)
class BackendResult:
    """
    Result of one backend invocation.

    confidence and cloud_handoff are only meaningful for the local backend;
    a missing confidence is resolved by the routing engine's default.
    """
    content: str
    function_calls: Tuple[FunctionCall, ...] = ()
    confidence: Optional[float] = None
    cloud_handoff: bool = False
    elapsed_ms: Optional[int] = None


@dataclass(frozen=True)
class RoutingDecision:
    """Where a request goes and why."""
    target: Target
    reason: str
    skip_local: bool = False


@dataclass(frozen=True)
class ChatRequest:
    """Validated chat completion request."""
    messages: Tuple[Message, ...]
    max_tokens: int = 512
    temperature: float = 0.7
    tools: Optional[Tuple[ToolSpec, ...]] = None
    mode: Mode = Mode.AUTO
    confidence_threshold: float = 0.7


@dataclass(frozen=True)
class RequestRecord:
    """Outcome of one request, as kept by the stats recorder."""
    timestamp: str
    mode: str
    target: Optional[str]
    prompt_tokens: int
    completion_tokens: int
    latency_ms: int
    status: int
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ts": self.timestamp,
            "mode": self.mode,
            "target": self.target,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "latency_ms": self.latency_ms,
            "status": self.status,
            "error": self.error,
        }


# ============================================================
# Responses
# ============================================================

@dataclass
class Usage:
    """Token usage information."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __post_init__(self):
        if self.total_tokens == 0:
            self.total_tokens = self.prompt_tokens + self.completion_tokens


@dataclass
class LfoMetadata:
    """Routing audit trail attached to every successful response."""
    confidence: Optional[float]
    routing_reason: str
    local_attempt: bool


@dataclass
class ChatCompletionResponse:
    """Chat completion response in OpenAI-compatible shape."""
    id: str
    model: str
    target: Target
    content: str
    function_calls: List[FunctionCall]
    usage: Usage
    lfo_metadata: LfoMetadata
    created: int = field(default_factory=lambda: int(time.time()))
    finish_reason: FinishReason = FinishReason.STOP

    @classmethod
    def create(
        cls,
        result: BackendResult,
        model: str,
        target: Target,
        usage: Usage,
        metadata: LfoMetadata,
    ) -> ChatCompletionResponse:
        """Helper to create a response."""
        return cls(
            id=f"chatcmpl-{uuid.uuid4().hex[:12]}",
            model=model,
            target=target,
            content=result.content,
            function_calls=list(result.function_calls),
            usage=usage,
            lfo_metadata=metadata,
        )


def response_to_dict(resp: ChatCompletionResponse) -> Dict[str, Any]:
    """Convert ChatCompletionResponse to dictionary for JSON serialization."""
    message: Dict[str, Any] = {"role": Role.ASSISTANT.value, "content": resp.content}
    if resp.function_calls:
        message["function_calls"] = [fc.to_dict() for fc in resp.function_calls]

    return {
        "id": resp.id,
        "object": "chat.completion",
        "created": resp.created,
        "model": resp.model,
        "choices": [
            {
                "index": 0,
                "message": message,
                "finish_reason": resp.finish_reason.value,
            }
        ],
        "usage": {
            "prompt_tokens": resp.usage.prompt_tokens,
            "completion_tokens": resp.usage.completion_tokens,
            "total_tokens": resp.usage.total_tokens,
        },
        "lfo_metadata": {
            "confidence": resp.lfo_metadata.confidence,
            "routing_reason": resp.lfo_metadata.routing_reason,
            "local_attempt": resp.lfo_metadata.local_attempt,
        },
    }
