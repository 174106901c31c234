"""
LFO - Backend Adapter Tests

Local (on-device) and Gemini adapters against httpx.MockTransport:
- Request payload shape
- Reply normalisation to BackendResult
- Typed errors for transport and upstream failures
"""

import json

import httpx
import pytest

from src.adapters import (
    AdapterConfig,
    GeminiAdapter,
    LocalBackendAdapter,
    StubCloudBackend,
    StubLocalBackend,
)
from src.core.errors import (
    ErrorKind,
    PermanentAuthOrQuotaError,
    RateLimitedError,
    UnreachableError,
    UpstreamError,
)
from src.core.models import Message, Role, ToolSpec


MESSAGES = (
    Message(role=Role.SYSTEM, content="Be brief."),
    Message(role=Role.USER, content="Turn on the flashlight"),
)

TOOLS = (
    ToolSpec(
        name="toggle_flashlight",
        description="Turn the flashlight on or off",
        parameters={
            "type": "object",
            "properties": {"on": {"type": "boolean", "description": "Desired state"}},
            "required": ["on"],
        },
    ),
)


def _local(handler) -> LocalBackendAdapter:
    base_url = "http://device.test:5555"
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=base_url)
    return LocalBackendAdapter(AdapterConfig(base_url=base_url), client=client)


def _gemini(handler) -> GeminiAdapter:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url=GeminiAdapter.DEFAULT_BASE_URL,
    )
    return GeminiAdapter(
        AdapterConfig(base_url="", api_key="test-key", model="gemini-2.0-flash"),
        client=client,
    )


# ============================================================
# Local adapter
# ============================================================

class TestLocalBackendAdapter:

    @pytest.mark.asyncio
    async def test_request_shape_and_text_reply(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["path"] = request.url.path
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "text": "Flashlight on",
                "confidence": 0.82,
                "cloud_handoff": False,
                "total_time_ms": 143.7,
            })

        adapter = _local(handler)
        result = await adapter.invoke(MESSAGES, 128, 0.2, TOOLS)
        await adapter.close()

        assert captured["path"] == "/completion"
        body = captured["body"]
        assert body["messages"][1] == {"role": "user", "content": "Turn on the flashlight"}
        assert body["max_tokens"] == 128
        assert body["temperature"] == 0.2
        assert body["tools"][0]["function"]["name"] == "toggle_flashlight"

        assert result.content == "Flashlight on"
        assert result.confidence == 0.82
        assert result.cloud_handoff is False
        assert result.elapsed_ms == 143

    @pytest.mark.asyncio
    async def test_tools_omitted_when_absent(self):
        captured = {}

        def handler(request):
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"text": "ok"})

        await _local(handler).invoke(MESSAGES, 64, 0.7)
        assert "tools" not in captured["body"]

    @pytest.mark.asyncio
    async def test_function_call_reply(self):
        def handler(request):
            return httpx.Response(200, json={
                "function_calls": [
                    {"name": "toggle_flashlight", "arguments": {"on": True}},
                    {"name": "set_volume", "args": {"level": 3}},
                    {"arguments": {"orphan": 1}},
                ],
                "confidence": 0.9,
            })

        result = await _local(handler).invoke(MESSAGES, 64, 0.7, TOOLS)

        assert result.content == ""
        assert [fc.name for fc in result.function_calls] == ["toggle_flashlight", "set_volume"]
        assert result.function_calls[1].arguments == {"level": 3}

    @pytest.mark.asyncio
    async def test_handoff_and_missing_confidence(self):
        def handler(request):
            return httpx.Response(200, json={"text": "not sure", "cloud_handoff": True})

        result = await _local(handler).invoke(MESSAGES, 64, 0.7)
        assert result.cloud_handoff is True
        assert result.confidence is None

    @pytest.mark.asyncio
    async def test_non_boolean_handoff_is_false(self):
        def handler(request):
            return httpx.Response(200, json={"text": "x", "cloud_handoff": "yes", "confidence": True})

        result = await _local(handler).invoke(MESSAGES, 64, 0.7)
        assert result.cloud_handoff is False
        assert result.confidence is None

    @pytest.mark.asyncio
    async def test_error_field(self):
        def handler(request):
            return httpx.Response(200, json={"error": "model not loaded"})

        with pytest.raises(UpstreamError) as exc_info:
            await _local(handler).invoke(MESSAGES, 64, 0.7)
        assert exc_info.value.error.message == "Local backend error: model not loaded"

    @pytest.mark.asyncio
    async def test_empty_reply(self):
        def handler(request):
            return httpx.Response(200, json={"text": "", "function_calls": []})

        with pytest.raises(UpstreamError) as exc_info:
            await _local(handler).invoke(MESSAGES, 64, 0.7)
        assert "missing both text and function_calls" in exc_info.value.error.message

    @pytest.mark.asyncio
    async def test_http_error(self):
        def handler(request):
            return httpx.Response(500, text="boom")

        with pytest.raises(UpstreamError) as exc_info:
            await _local(handler).invoke(MESSAGES, 64, 0.7)
        assert exc_info.value.error.message == "Local backend HTTP 500: Internal Server Error"
        assert exc_info.value.tripworthy

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>")

        with pytest.raises(UpstreamError):
            await _local(handler).invoke(MESSAGES, 64, 0.7)

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        def handler(request):
            raise httpx.ConnectError("Connection refused", request=request)

        with pytest.raises(UnreachableError) as exc_info:
            await _local(handler).invoke(MESSAGES, 64, 0.7)

        assert exc_info.value.kind == ErrorKind.UNREACHABLE
        assert "ANDROID_HOST" in exc_info.value.error.message

    def test_from_host(self):
        adapter = LocalBackendAdapter.from_host("192.168.1.20", 5555, timeout_seconds=5)
        assert adapter.config.base_url == "http://192.168.1.20:5555"
        assert adapter.model_id == "lfo-local-functiongemma"
        assert adapter.name == "local"


# ============================================================
# Gemini adapter
# ============================================================

class TestGeminiAdapter:

    @pytest.mark.asyncio
    async def test_request_shape(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["key"] = request.headers.get("x-goog-api-key")
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "candidates": [{"content": {"parts": [{"text": "Done."}]}}]
            })

        messages = MESSAGES + (
            Message(role=Role.ASSISTANT, content="Which one?"),
            Message(role=Role.USER, content="The back one"),
        )
        result = await _gemini(handler).invoke(messages, 256, 0.5, TOOLS)

        assert captured["url"] == (
            "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.0-flash:generateContent"
        )
        assert captured["key"] == "test-key"
        assert "key=" not in captured["url"]

        body = captured["body"]
        assert body["systemInstruction"] == {"parts": [{"text": "Be brief."}]}
        assert [c["role"] for c in body["contents"]] == ["user", "model", "user"]
        assert body["generationConfig"] == {"maxOutputTokens": 256, "temperature": 0.5}

        declaration = body["tools"][0]["functionDeclarations"][0]
        assert declaration["name"] == "toggle_flashlight"
        assert declaration["parameters"]["type"] == "OBJECT"
        assert declaration["parameters"]["properties"]["on"] == {
            "type": "BOOLEAN",
            "description": "Desired state",
        }
        assert declaration["parameters"]["required"] == ["on"]

        assert result.content == "Done."
        assert result.confidence is None
        assert result.cloud_handoff is False

    @pytest.mark.asyncio
    async def test_no_system_instruction_or_tools(self):
        captured = {}

        def handler(request):
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": "hi"}]}}]})

        await _gemini(handler).invoke((Message(role=Role.USER, content="hello"),), 64, 0.7)

        assert "systemInstruction" not in captured["body"]
        assert "tools" not in captured["body"]

    @pytest.mark.asyncio
    async def test_text_and_function_call_parts(self):
        def handler(request):
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [
                {"text": "Sure, "},
                {"text": "turning it on."},
                {"functionCall": {"name": "toggle_flashlight", "args": {"on": True}}},
            ]}}]})

        result = await _gemini(handler).invoke(MESSAGES, 64, 0.7, TOOLS)

        assert result.content == "Sure, turning it on."
        assert result.function_calls[0].name == "toggle_flashlight"
        assert result.function_calls[0].arguments == {"on": True}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{}, {"candidates": []}, {"candidates": [{"content": {"parts": []}}]}])
    async def test_empty_response(self, payload):
        def handler(request):
            return httpx.Response(200, json=payload)

        with pytest.raises(UpstreamError) as exc_info:
            await _gemini(handler).invoke(MESSAGES, 64, 0.7)
        assert exc_info.value.error.message == "Gemini returned empty response"

    @pytest.mark.asyncio
    async def test_invalid_key_401(self):
        def handler(request):
            return httpx.Response(401, json={"error": {"message": "unauthorized"}})

        with pytest.raises(PermanentAuthOrQuotaError) as exc_info:
            await _gemini(handler).invoke(MESSAGES, 64, 0.7)

        error = exc_info.value
        assert error.status_code == 401
        assert "invalid or revoked" in error.error.message
        assert error.error.details == {"upstream_message": "unauthorized"}
        assert not error.tripworthy

    @pytest.mark.asyncio
    async def test_invalid_key_reported_as_400(self):
        def handler(request):
            return httpx.Response(400, json={"error": {
                "code": 400,
                "message": "API key not valid. Please pass a valid API key.",
                "status": "INVALID_ARGUMENT",
                "details": [{"reason": "API_KEY_INVALID"}],
            }})

        with pytest.raises(PermanentAuthOrQuotaError):
            await _gemini(handler).invoke(MESSAGES, 64, 0.7)

    @pytest.mark.asyncio
    async def test_quota_403(self):
        def handler(request):
            return httpx.Response(403, json={"error": {"message": "quota"}})

        with pytest.raises(PermanentAuthOrQuotaError) as exc_info:
            await _gemini(handler).invoke(MESSAGES, 64, 0.7)

        assert exc_info.value.status_code == 403
        assert "quota exceeded" in exc_info.value.error.message
        assert exc_info.value.error.details == {"upstream_message": "quota"}

    @pytest.mark.asyncio
    async def test_rate_limited(self):
        def handler(request):
            return httpx.Response(429, headers={"Retry-After": "17"}, json={"error": {}})

        with pytest.raises(RateLimitedError) as exc_info:
            await _gemini(handler).invoke(MESSAGES, 64, 0.7)

        assert exc_info.value.error.retry_after == 17
        assert exc_info.value.tripworthy
        assert exc_info.value.error.details == {}

    @pytest.mark.asyncio
    async def test_rate_limited_keeps_upstream_message(self):
        def handler(request):
            return httpx.Response(429, json={"error": {"message": "Resource has been exhausted (e.g. check quota)."}})

        with pytest.raises(RateLimitedError) as exc_info:
            await _gemini(handler).invoke(MESSAGES, 64, 0.7)

        body = exc_info.value.error.to_dict()["error"]
        assert body["message"] == "Gemini rate limit exceeded. Please try again later."
        assert body["details"] == {"upstream_message": "Resource has been exhausted (e.g. check quota)."}

    @pytest.mark.asyncio
    async def test_server_error_passes_message_through(self):
        def handler(request):
            return httpx.Response(503, json={"error": {"message": "The model is overloaded.", "status": "UNAVAILABLE"}})

        with pytest.raises(UpstreamError) as exc_info:
            await _gemini(handler).invoke(MESSAGES, 64, 0.7)

        assert exc_info.value.error.message == "The model is overloaded."
        assert exc_info.value.error.details == {"upstream_status": 503}

    @pytest.mark.asyncio
    async def test_server_error_without_body(self):
        def handler(request):
            return httpx.Response(502, text="bad gateway")

        with pytest.raises(UpstreamError) as exc_info:
            await _gemini(handler).invoke(MESSAGES, 64, 0.7)
        assert exc_info.value.error.message == "Gemini HTTP 502"

    def test_defaults(self):
        adapter = GeminiAdapter(AdapterConfig(base_url="", api_key="k"))
        assert adapter.model == "gemini-2.0-flash"
        assert adapter.model_id == "lfo-gemini"
        assert adapter.config.base_url == GeminiAdapter.DEFAULT_BASE_URL


# ============================================================
# Stub adapters
# ============================================================

class TestStubAdapters:

    @pytest.mark.asyncio
    async def test_stub_local_echoes(self):
        result = await StubLocalBackend(confidence=0.4).invoke(MESSAGES, 64, 0.7)
        assert result.content == "stub-local: Turn on the flashlight"
        assert result.confidence == 0.4

    @pytest.mark.asyncio
    async def test_stub_cloud_echoes(self):
        backend = StubCloudBackend()
        result = await backend.invoke(MESSAGES, 64, 0.7)
        await backend.close()
        assert result.content == "stub-cloud: Turn on the flashlight"
        assert backend.model_id == "lfo-gemini"
