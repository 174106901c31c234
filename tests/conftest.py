"""
LFO - Pytest Configuration

Configures:
- Integration test markers (skip by default)
- Fake backends with scripted replies for pipeline and API tests
- A manual clock for breaker and stats tests
"""

import asyncio
import os
from collections import deque
from typing import Any, Iterable, List, Optional, Sequence

import pytest
from fastapi.testclient import TestClient

from src.auth.config import AuthConfig
from src.core.models import BackendResult, Message, Target, ToolSpec
from src.routing import (
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
    PipelineSettings,
    RequestPipeline,
    StatsRecorder,
)
from src.server import create_app


# ============================================================
# Environment Configuration
# ============================================================

def _is_truthy(value: Optional[str]) -> bool:
    """Check if environment variable is truthy."""
    if value is None:
        return False
    return value.lower() in ("1", "true", "yes", "on")


RUN_INTEGRATION = _is_truthy(os.getenv("RUN_INTEGRATION"))


# ============================================================
# Pytest Markers
# ============================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires RUN_INTEGRATION=1)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless RUN_INTEGRATION=1."""
    skip_integration = pytest.mark.skip(
        reason="Integration test - set RUN_INTEGRATION=1 to run"
    )

    for item in items:
        if "integration" in item.keywords and not RUN_INTEGRATION:
            item.add_marker(skip_integration)


# ============================================================
# Test doubles
# ============================================================

class ManualClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeBackend:
    """
    Backend with a scripted reply queue.

    Each queued item is either a BackendResult (returned) or an exception
    (raised). When the queue runs dry the default result is returned.
    """

    def __init__(
        self,
        name: str,
        model_id: Optional[str] = None,
        replies: Iterable[Any] = (),
        default: Optional[BackendResult] = None,
        delay: float = 0.0,
    ):
        self.name = name
        self.model_id = model_id or f"fake-{name}"
        self.replies = deque(replies)
        self.default = default or BackendResult(content=f"{name} answer", confidence=0.9)
        self.delay = delay
        self.calls: List[dict] = []
        self.closed = False

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def queue(self, *replies: Any):
        self.replies.extend(replies)

    async def invoke(
        self,
        messages: Sequence[Message],
        max_tokens: int,
        temperature: float,
        tools: Optional[Sequence[ToolSpec]] = None,
    ) -> BackendResult:
        self.calls.append({
            "messages": list(messages),
            "max_tokens": max_tokens,
            "temperature": temperature,
            "tools": tools,
        })
        if self.delay:
            await asyncio.sleep(self.delay)

        reply = self.replies.popleft() if self.replies else self.default
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def close(self):
        self.closed = True


# ============================================================
# Fixtures
# ============================================================

@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def local_backend():
    return FakeBackend(Target.LOCAL.value, model_id="test-local")


@pytest.fixture
def cloud_backend():
    return FakeBackend(
        Target.CLOUD.value,
        model_id="test-cloud",
        default=BackendResult(content="cloud answer"),
    )


@pytest.fixture
def breakers(clock):
    return CircuitBreakerRegistry(
        config=CircuitBreakerConfig(failure_threshold=3, reset_timeout_seconds=30),
        clock=clock,
    )


@pytest.fixture
def pipeline(local_backend, cloud_backend, breakers, clock):
    return RequestPipeline(
        local=local_backend,
        cloud=cloud_backend,
        breakers=breakers,
        stats=StatsRecorder(capacity=50, clock=clock),
        settings=PipelineSettings(local_timeout_ms=1000, cloud_timeout_ms=1000),
        clock=clock,
    )


@pytest.fixture
def app(pipeline):
    return create_app(pipeline=pipeline, auth_config=AuthConfig())


@pytest.fixture
def client(app):
    return TestClient(app)


def chat_body(content: str = "hi", **extra: Any) -> dict:
    """Minimal valid completion request body."""
    body = {"messages": [{"role": "user", "content": content}]}
    body.update(extra)
    return body
