"""
LFO - Routing Engine

Pure decision functions for hybrid routing:

1. Mode resolution: explicit "local"/"cloud" overrides, everything else is auto
2. Token pre-filter: prompts over the local budget skip the local backend
3. Confidence evaluation: a local result is kept, or escalated to cloud when
   the model asked for a handoff or its confidence is below the threshold

No function here touches shared state or I/O.
"""

import math
from typing import Any, Optional, Sequence

from ..core.models import BackendResult, Message, Mode, RoutingDecision, Target


# Confidence assumed when the local backend does not report one.
# Neutral midpoint; tune per deployment rather than per request.
DEFAULT_CONFIDENCE = 0.5

DEFAULT_CONFIDENCE_THRESHOLD = 0.7

DEFAULT_MAX_LOCAL_TOKENS = 1500

# Characters per token for the cost heuristic
CHARS_PER_TOKEN = 4

_VALID_MODES = {mode.value: mode for mode in Mode}


def _format_number(value: float) -> str:
    """Render a threshold the way it was configured (1500, 0.7)."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def resolve_mode(raw: Any) -> Mode:
    """
    Resolve the caller's requested mode.

    Total: anything that is not exactly "auto", "local" or "cloud"
    (None, other types, other spellings) resolves to AUTO.
    """
    if isinstance(raw, str):
        return _VALID_MODES.get(raw, Mode.AUTO)
    return Mode.AUTO


def estimate_tokens(messages: Sequence[Message]) -> int:
    """
    Estimate prompt size in tokens.

    Deliberately approximate: ceil(chars / 4) over the space-joined
    contents. Used as a cost proxy, not as a tokenizer.
    """
    if not messages:
        return 0
    total_chars = len(" ".join(m.content for m in messages))
    return math.ceil(total_chars / CHARS_PER_TOKEN)


def estimate_completion_tokens(content: str) -> int:
    """Estimate completion size with the same heuristic."""
    return math.ceil(len(content) / CHARS_PER_TOKEN)


def evaluate_confidence_routing(
    prior_result: Optional[BackendResult] = None,
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> RoutingDecision:
    """
    Decide whether a local result is good enough.

    The handoff flag is checked before confidence and wins unconditionally.
    """
    if prior_result is None:
        return RoutingDecision(target=Target.LOCAL, reason="initial_attempt")

    if prior_result.cloud_handoff is True:
        return RoutingDecision(target=Target.CLOUD, reason="cloud_handoff_flag")

    confidence = prior_result.confidence
    if confidence is None:
        confidence = DEFAULT_CONFIDENCE

    if confidence < confidence_threshold:
        return RoutingDecision(
            target=Target.CLOUD,
            reason=f"low_confidence_{confidence:.2f}_below_{_format_number(confidence_threshold)}",
        )

    return RoutingDecision(target=Target.LOCAL, reason=f"high_confidence_{confidence:.2f}")


def determine_initial_routing(
    messages: Sequence[Message],
    mode: Mode,
    max_local_tokens: int = DEFAULT_MAX_LOCAL_TOKENS,
) -> RoutingDecision:
    """
    Compute the initial routing decision before any backend is called.

    Explicit modes win. In auto mode, prompts over the local token budget go
    straight to cloud; everything else attempts local first.
    """
    if mode == Mode.LOCAL:
        return RoutingDecision(target=Target.LOCAL, reason="mode_override")
    if mode == Mode.CLOUD:
        return RoutingDecision(target=Target.CLOUD, reason="mode_override")

    tokens = estimate_tokens(messages)
    if tokens > max_local_tokens:
        return RoutingDecision(
            target=Target.CLOUD,
            reason=f"tokens_{tokens}_exceeds_{_format_number(max_local_tokens)}",
            skip_local=True,
        )

    return evaluate_confidence_routing(None)
