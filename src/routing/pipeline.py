"""
LFO - Request Pipeline

Orchestrates one chat completion:

1. Validate the raw request (BadRequest never reaches a backend)
2. Resolve mode, estimate tokens, compute the initial routing decision
3. Call the chosen backend through its circuit breaker, under a deadline
4. For a local attempt, re-evaluate confidence / handoff and escalate to
   cloud at most once, keeping the escalation reason
5. Classify any failure once, feed it to the breaker of the backend that
   was called, record stats, re-raise

There are no retries. The one-hop escalation is a routing decision, not a
retry of the same backend.
"""

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ..adapters.base import BaseBackend
from ..core.errors import BadRequestError, CircuitOpenError, LfoException, classify_error
from ..core.models import (
    BackendResult,
    ChatCompletionResponse,
    ChatRequest,
    LfoMetadata,
    Message,
    Mode,
    RequestRecord,
    Role,
    Target,
    ToolSpec,
    Usage,
)
from ..observability.logging import LogContext, get_logger
from ..observability.metrics import MetricsCollector
from ..observability.tracing import trace_backend_call
from .circuit_breaker import CircuitBreakerRegistry, CircuitState
from .engine import (
    DEFAULT_CONFIDENCE_THRESHOLD,
    DEFAULT_MAX_LOCAL_TOKENS,
    determine_initial_routing,
    estimate_completion_tokens,
    estimate_tokens,
    evaluate_confidence_routing,
    resolve_mode,
)
from .stats import StatsRecorder


logger = get_logger(__name__)

DEFAULT_MAX_TOKENS = 512
DEFAULT_TEMPERATURE = 0.7

_ALLOWED_ROLES = {role.value: role for role in Role}


@dataclass
class PipelineSettings:
    """Per-process routing knobs."""
    max_local_tokens: int = DEFAULT_MAX_LOCAL_TOKENS
    local_timeout_ms: int = 30000
    cloud_timeout_ms: int = 60000
    default_confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _raw_mode(payload: Any) -> Any:
    if isinstance(payload, dict) and isinstance(payload.get("metadata"), dict):
        return payload["metadata"].get("mode")
    return None


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


# ============================================================
# Validation
# ============================================================

def validate_request(
    payload: Any,
    default_confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
    request_id: str = "",
) -> ChatRequest:
    """
    Turn a decoded JSON body into a ChatRequest.

    Raises:
        BadRequestError: on any structural problem
    """
    if not isinstance(payload, dict):
        raise BadRequestError("Request body must be a JSON object", request_id=request_id)

    raw_messages = payload.get("messages")
    if not isinstance(raw_messages, list) or not raw_messages:
        raise BadRequestError(
            "messages field is required and must be a non-empty array",
            param="messages",
            request_id=request_id,
        )

    messages: List[Message] = []
    for index, raw in enumerate(raw_messages):
        if (
            not isinstance(raw, dict)
            or not isinstance(raw.get("role"), str)
            or not isinstance(raw.get("content"), str)
        ):
            raise BadRequestError(
                "Each message must have a string 'role' and string 'content' field",
                param=f"messages[{index}]",
                request_id=request_id,
            )
        role = _ALLOWED_ROLES.get(raw["role"])
        if role is None:
            raise BadRequestError(
                f"messages[{index}].role must be one of: {', '.join(_ALLOWED_ROLES)}",
                param=f"messages[{index}].role",
                request_id=request_id,
            )
        messages.append(Message(role=role, content=raw["content"]))

    max_tokens = payload.get("max_tokens")
    if max_tokens is None:
        max_tokens = DEFAULT_MAX_TOKENS
    elif not isinstance(max_tokens, int) or isinstance(max_tokens, bool) or max_tokens < 1:
        raise BadRequestError(
            "max_tokens must be a positive integer",
            param="max_tokens",
            request_id=request_id,
        )

    temperature = payload.get("temperature")
    if temperature is None:
        temperature = DEFAULT_TEMPERATURE
    elif not _is_number(temperature):
        raise BadRequestError(
            "temperature must be a number",
            param="temperature",
            request_id=request_id,
        )

    tools = _validate_tools(payload.get("tools"), request_id)

    metadata = payload.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}

    threshold = metadata.get("confidence_threshold")
    if not _is_number(threshold):
        threshold = default_confidence_threshold

    return ChatRequest(
        messages=tuple(messages),
        max_tokens=max_tokens,
        temperature=float(temperature),
        tools=tools,
        mode=resolve_mode(metadata.get("mode")),
        confidence_threshold=float(threshold),
    )


def _validate_tools(raw_tools: Any, request_id: str) -> Optional[Tuple[ToolSpec, ...]]:
    if raw_tools is None:
        return None
    if not isinstance(raw_tools, list):
        raise BadRequestError("tools must be an array", param="tools", request_id=request_id)

    tools = []
    for index, raw in enumerate(raw_tools):
        if not isinstance(raw, dict):
            raise BadRequestError(
                "Each tool must be an object",
                param=f"tools[{index}]",
                request_id=request_id,
            )
        tool = ToolSpec.from_dict(raw)
        if not isinstance(tool.name, str) or not tool.name:
            raise BadRequestError(
                "Each tool must have a name",
                param=f"tools[{index}]",
                request_id=request_id,
            )
        tools.append(tool)

    return tuple(tools) or None


# ============================================================
# Pipeline
# ============================================================

class RequestPipeline:
    """
    Hybrid local/cloud request pipeline.

    Breakers, stats and metrics are injected so tests (and several app
    instances) never share state through module globals.
    """

    def __init__(
        self,
        local: BaseBackend,
        cloud: BaseBackend,
        breakers: Optional[CircuitBreakerRegistry] = None,
        stats: Optional[StatsRecorder] = None,
        settings: Optional[PipelineSettings] = None,
        metrics: Optional[MetricsCollector] = None,
        clock=time.monotonic,
    ):
        self.local = local
        self.cloud = cloud
        self.breakers = breakers or CircuitBreakerRegistry()
        self.stats = stats or StatsRecorder()
        self.settings = settings or PipelineSettings()
        self.metrics = metrics or MetricsCollector()
        self._clock = clock

        self._backends: Dict[Target, BaseBackend] = {
            Target.LOCAL: local,
            Target.CLOUD: cloud,
        }
        self._timeouts_ms: Dict[Target, int] = {
            Target.LOCAL: self.settings.local_timeout_ms,
            Target.CLOUD: self.settings.cloud_timeout_ms,
        }

        self.breakers.add_listener(self._on_breaker_transition)
        for backend in (local, cloud):
            breaker = self.breakers.get_breaker(backend.name)
            self.metrics.set_circuit_breaker_state(backend.name, breaker.state.value)

    def _on_breaker_transition(self, name: str, old: CircuitState, new: CircuitState):
        self.metrics.set_circuit_breaker_state(name, new.value)
        if new == CircuitState.OPEN:
            self.stats.increment_circuit_trips()
            self.metrics.record_circuit_trip(name)

    # ------------------------------------------------------------------

    async def handle(self, payload: Any, request_id: str = "") -> ChatCompletionResponse:
        """
        Serve one chat completion request.

        Raises:
            LfoException: classified failure (already recorded in stats)
        """
        started = self._clock()

        try:
            request = validate_request(
                payload,
                self.settings.default_confidence_threshold,
                request_id,
            )
        except BadRequestError as e:
            logger.warning("Rejected invalid request", error=e.error.message, param=e.error.param)
            self._record(
                started,
                mode=resolve_mode(_raw_mode(payload)),
                target=None,
                prompt_tokens=0,
                completion_tokens=0,
                status=e.status_code,
                error=e.error.message,
            )
            raise

        return await self.execute(request, request_id, started)

    async def execute(
        self,
        request: ChatRequest,
        request_id: str = "",
        started: Optional[float] = None,
    ) -> ChatCompletionResponse:
        """Route and run an already-validated request."""
        if started is None:
            started = self._clock()

        prompt_tokens = estimate_tokens(request.messages)
        initial = determine_initial_routing(
            request.messages,
            request.mode,
            self.settings.max_local_tokens,
        )
        self.metrics.record_routing_decision(initial.target.value, initial.reason)

        log_ctx = LogContext.get_current()
        if log_ctx:
            log_ctx.update(mode=request.mode.value)

        logger.info(
            "Chat completion request",
            prompt_tokens=prompt_tokens,
            mode=request.mode.value,
            tool_count=len(request.tools or ()),
            initial_target=initial.target.value,
            routing_reason=initial.reason,
        )

        # Backend currently being called; decides error attribution
        current = initial.target
        local_attempt = False
        try:
            if initial.target == Target.CLOUD:
                result = await self._call_backend(Target.CLOUD, request, request_id)
                final_target = Target.CLOUD
                routing_reason = initial.reason
                confidence = None
            else:
                local_attempt = True
                local_result = await self._call_backend(Target.LOCAL, request, request_id)

                decision = evaluate_confidence_routing(
                    local_result,
                    request.confidence_threshold,
                )
                self.metrics.record_routing_decision(decision.target.value, decision.reason)
                routing_reason = decision.reason
                confidence = local_result.confidence

                if decision.target == Target.CLOUD:
                    logger.info(
                        "Escalating to cloud",
                        reason=decision.reason,
                        confidence=local_result.confidence,
                        cloud_handoff=local_result.cloud_handoff,
                    )
                    self.metrics.record_escalation(decision.reason)
                    current = Target.CLOUD
                    result = await self._call_backend(Target.CLOUD, request, request_id)
                    final_target = Target.CLOUD
                else:
                    result = local_result
                    final_target = Target.LOCAL

        except LfoException as e:
            self._fail(started, request, prompt_tokens, current, e)
            raise

        completion_tokens = estimate_completion_tokens(result.content)
        latency_ms = self._record(
            started,
            mode=request.mode,
            target=final_target.value,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            status=200,
        )
        self.metrics.record_tokens(final_target.value, prompt_tokens, completion_tokens)

        if log_ctx:
            log_ctx.update(target=final_target.value)

        logger.info(
            "Chat completion finished",
            target=final_target.value,
            routing_reason=routing_reason,
            latency_ms=latency_ms,
            completion_tokens=completion_tokens,
        )

        return ChatCompletionResponse.create(
            result,
            model=self._backends[final_target].model_id,
            target=final_target,
            usage=Usage(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens),
            metadata=LfoMetadata(
                confidence=confidence,
                routing_reason=routing_reason,
                local_attempt=local_attempt,
            ),
        )

    async def _call_backend(
        self,
        target: Target,
        request: ChatRequest,
        request_id: str,
    ) -> BackendResult:
        """
        One gated, deadline-bounded backend call.

        The breaker is fed exactly once per admitted call. A rejected call
        never reaches the backend and does not touch the failure count.
        """
        backend = self._backends[target]
        breaker = self.breakers.get_breaker(backend.name)
        timeout_ms = self._timeouts_ms[target]

        admission = breaker.allow_request()
        if admission is None:
            raise CircuitOpenError(backend.name, breaker.retry_after_seconds(), request_id)

        with trace_backend_call(backend.name, backend.model_id) as span:
            try:
                result = await asyncio.wait_for(
                    backend.invoke(
                        request.messages,
                        request.max_tokens,
                        request.temperature,
                        request.tools,
                    ),
                    timeout=timeout_ms / 1000,
                )
            except asyncio.CancelledError:
                # Caller went away: no outcome, but the probe slot must not leak
                breaker.release_probe(admission)
                raise
            except Exception as e:
                error = classify_error(e, backend.name, timeout_ms, request_id)
                if not error.error.request_id:
                    error.error.request_id = request_id
                breaker.record_failure(admission, tripworthy=error.tripworthy)
                span.set_attribute("lfo.error_kind", error.kind.value)
                if error is e:
                    raise
                raise error from e

            breaker.record_success(admission)
            if result.confidence is not None:
                span.set_attribute("lfo.confidence", result.confidence)
            span.set_attribute("lfo.cloud_handoff", result.cloud_handoff)
            return result

    def _fail(
        self,
        started: float,
        request: ChatRequest,
        prompt_tokens: int,
        target: Target,
        error: LfoException,
    ):
        latency_ms = self._record(
            started,
            mode=request.mode,
            target=target.value,
            prompt_tokens=prompt_tokens,
            completion_tokens=0,
            status=error.status_code,
            error=error.error.message,
        )
        logger.warning(
            "Chat completion failed",
            target=target.value,
            error_kind=error.kind.value,
            status_code=error.status_code,
            error=error.error.message,
            latency_ms=latency_ms,
        )

    def _record(
        self,
        started: float,
        mode: Mode,
        target: Optional[str],
        prompt_tokens: int,
        completion_tokens: int,
        status: int,
        error: Optional[str] = None,
    ) -> int:
        """Append a RequestRecord and count it in Prometheus. Returns latency in ms."""
        elapsed = self._clock() - started
        latency_ms = int(round(elapsed * 1000))
        self.stats.record(
            RequestRecord(
                timestamp=_utc_now_iso(),
                mode=mode.value,
                target=target,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                latency_ms=latency_ms,
                status=status,
                error=error,
            )
        )
        self.metrics.record_request(target, status, max(elapsed, 0.0))
        return latency_ms

    async def close(self):
        """Close both backends."""
        await self.local.close()
        await self.cloud.close()
