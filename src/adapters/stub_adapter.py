"""
LFO - Stub Backend Adapters

Deterministic in-process backends used for smoke checks (USE_STUB_ADAPTERS).
No network calls, no device and no Gemini key required.
"""

from typing import Optional, Sequence

from .base import AdapterConfig, BaseBackend
from ..core.models import BackendResult, Message, Role, Target, ToolSpec
from .local_adapter import DEFAULT_LOCAL_MODEL_ID
from .gemini_adapter import DEFAULT_CLOUD_MODEL_ID


def _last_user_text(messages: Sequence[Message]) -> str:
    for msg in reversed(messages):
        if msg.role == Role.USER:
            return msg.content
    return ""


class _StubBackend(BaseBackend):
    """Shared no-op plumbing: stubs own no HTTP client."""

    def __init__(self, model_id: str):
        self.config = AdapterConfig(base_url="")
        self.client = None
        self.model_id = model_id

    async def close(self):
        return


class StubLocalBackend(_StubBackend):
    """Echoes the last user turn with a fixed confidence."""

    name = Target.LOCAL.value

    def __init__(self, confidence: float = 0.9, model_id: str = DEFAULT_LOCAL_MODEL_ID):
        super().__init__(model_id)
        self.confidence = confidence

    async def invoke(
        self,
        messages: Sequence[Message],
        max_tokens: int,
        temperature: float,
        tools: Optional[Sequence[ToolSpec]] = None,
    ) -> BackendResult:
        return BackendResult(
            content=f"stub-local: {_last_user_text(messages)}",
            confidence=self.confidence,
            elapsed_ms=5,
        )


class StubCloudBackend(_StubBackend):
    """Echoes the last user turn."""

    name = Target.CLOUD.value

    def __init__(self, model_id: str = DEFAULT_CLOUD_MODEL_ID):
        super().__init__(model_id)

    async def invoke(
        self,
        messages: Sequence[Message],
        max_tokens: int,
        temperature: float,
        tools: Optional[Sequence[ToolSpec]] = None,
    ) -> BackendResult:
        return BackendResult(content=f"stub-cloud: {_last_user_text(messages)}")
