"""
LFO - Routing Engine Tests

Verifies:
- Mode resolution is total
- Token estimation heuristic
- Initial routing (mode override, token pre-filter)
- Confidence evaluation (handoff dominance, threshold, default confidence)
"""

import pytest

from src.core.models import BackendResult, Message, Mode, Role, Target
from src.routing.engine import (
    DEFAULT_CONFIDENCE,
    DEFAULT_MAX_LOCAL_TOKENS,
    determine_initial_routing,
    estimate_completion_tokens,
    estimate_tokens,
    evaluate_confidence_routing,
    resolve_mode,
)


def _user(content: str) -> Message:
    return Message(role=Role.USER, content=content)


# ============================================================
# Mode resolution
# ============================================================

class TestResolveMode:
    """resolve_mode maps anything unexpected to AUTO."""

    def test_explicit_modes(self):
        assert resolve_mode("local") == Mode.LOCAL
        assert resolve_mode("cloud") == Mode.CLOUD
        assert resolve_mode("auto") == Mode.AUTO

    @pytest.mark.parametrize("raw", [None, "", "LOCAL", "Cloud", " local", "remote", 1, True, [], {"mode": "local"}])
    def test_everything_else_is_auto(self, raw):
        assert resolve_mode(raw) == Mode.AUTO


# ============================================================
# Token estimation
# ============================================================

class TestEstimateTokens:
    """ceil(chars / 4) over the space-joined contents."""

    def test_empty(self):
        assert estimate_tokens([]) == 0

    def test_short_message(self):
        assert estimate_tokens([_user("hi")]) == 1

    def test_joins_with_spaces(self):
        # "abcd efgh" is 9 chars -> 3 tokens
        assert estimate_tokens([_user("abcd"), _user("efgh")]) == 3

    def test_boundary(self):
        assert estimate_tokens([_user("x" * 6000)]) == 1500
        assert estimate_tokens([_user("x" * 6001)]) == 1501

    def test_monotonic_in_length(self):
        previous = 0
        for length in range(0, 200, 7):
            current = estimate_tokens([_user("y" * length)])
            assert current >= previous
            previous = current

    def test_completion_estimate(self):
        assert estimate_completion_tokens("") == 0
        assert estimate_completion_tokens("hello") == 2


# ============================================================
# Initial routing
# ============================================================

class TestInitialRouting:
    """Mode override and token pre-filter."""

    def test_mode_override_local_ignores_size(self):
        decision = determine_initial_routing([_user("x" * 10000)], Mode.LOCAL)
        assert decision.target == Target.LOCAL
        assert decision.reason == "mode_override"
        assert decision.skip_local is False

    def test_mode_override_cloud(self):
        decision = determine_initial_routing([_user("hi")], Mode.CLOUD)
        assert decision.target == Target.CLOUD
        assert decision.reason == "mode_override"

    def test_short_prompt_attempts_local(self):
        decision = determine_initial_routing([_user("hi")], Mode.AUTO)
        assert decision.target == Target.LOCAL
        assert decision.reason == "initial_attempt"
        assert decision.skip_local is False

    def test_oversized_prompt_skips_local(self):
        decision = determine_initial_routing([_user("a" * 6001)], Mode.AUTO)
        assert decision.target == Target.CLOUD
        assert decision.skip_local is True
        assert decision.reason == "tokens_1501_exceeds_1500"

    def test_prompt_at_budget_stays_local(self):
        decision = determine_initial_routing([_user("a" * 6000)], Mode.AUTO)
        assert decision.target == Target.LOCAL

    @pytest.mark.parametrize("threshold,tokens", [(0, 1), (10, 10), (10, 11), (100, 99)])
    def test_threshold_property(self, threshold, tokens):
        messages = [_user("z" * (tokens * 4))]
        decision = determine_initial_routing(messages, Mode.AUTO, threshold)
        if tokens > threshold:
            assert decision.target == Target.CLOUD
            assert decision.skip_local is True
        else:
            assert decision.target == Target.LOCAL
            assert decision.skip_local is False

    def test_default_budget(self):
        assert DEFAULT_MAX_LOCAL_TOKENS == 1500


# ============================================================
# Confidence evaluation
# ============================================================

class TestConfidenceRouting:
    """Handoff flag wins; otherwise compare against the threshold."""

    def test_no_prior_result(self):
        decision = evaluate_confidence_routing(None)
        assert decision.target == Target.LOCAL
        assert decision.reason == "initial_attempt"

    def test_handoff_dominates_confidence(self):
        result = BackendResult(content="x", confidence=0.99, cloud_handoff=True)
        decision = evaluate_confidence_routing(result, 0.7)
        assert decision.target == Target.CLOUD
        assert "cloud_handoff_flag" in decision.reason

    def test_low_confidence_escalates(self):
        result = BackendResult(content="x", confidence=0.45)
        decision = evaluate_confidence_routing(result, 0.7)
        assert decision.target == Target.CLOUD
        assert "low_confidence_0.45" in decision.reason
        assert decision.reason == "low_confidence_0.45_below_0.7"

    def test_high_confidence_stays_local(self):
        result = BackendResult(content="x", confidence=0.95)
        decision = evaluate_confidence_routing(result, 0.7)
        assert decision.target == Target.LOCAL
        assert decision.reason == "high_confidence_0.95"

    def test_confidence_equal_to_threshold_is_kept(self):
        result = BackendResult(content="x", confidence=0.7)
        decision = evaluate_confidence_routing(result, 0.7)
        assert decision.target == Target.LOCAL

    def test_missing_confidence_uses_default(self):
        result = BackendResult(content="x")
        decision = evaluate_confidence_routing(result, 0.7)
        assert DEFAULT_CONFIDENCE == 0.5
        assert decision.target == Target.CLOUD
        assert decision.reason == "low_confidence_0.50_below_0.7"

    def test_missing_confidence_passes_lower_threshold(self):
        result = BackendResult(content="x")
        decision = evaluate_confidence_routing(result, 0.4)
        assert decision.target == Target.LOCAL
        assert decision.reason == "high_confidence_0.50"
