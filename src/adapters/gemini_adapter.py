"""
LFO - Google Gemini Backend Adapter

Adapter for the Gemini generateContent REST API, used as the cloud backend.
"""

from typing import Any, Dict, List, Optional, Sequence

import httpx

from .base import AdapterConfig, BaseBackend
from ..core.errors import (
    PermanentAuthOrQuotaError,
    RateLimitedError,
    UpstreamError,
)
from ..core.models import BackendResult, Message, Role, Target, ToolSpec
from ..observability.logging import get_logger


logger = get_logger(__name__)

DEFAULT_CLOUD_MODEL_ID = "lfo-gemini"


class GeminiAdapter(BaseBackend):
    """
    Adapter for Google Gemini.

    Supports:
    - Chat completions with system instruction
    - Tool/Function calling

    Credential and quota failures are raised as permanent (non-tripping)
    errors; 429 is raised as rate limiting.
    """

    name = Target.CLOUD.value
    DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
    DEFAULT_MODEL = "gemini-2.0-flash"

    def __init__(
        self,
        config: AdapterConfig,
        client: Optional[httpx.AsyncClient] = None,
        model_id: str = DEFAULT_CLOUD_MODEL_ID,
    ):
        if not config.base_url:
            config.base_url = self.DEFAULT_BASE_URL
        super().__init__(config, client)
        self.api_key = config.api_key
        self.model = config.model or self.DEFAULT_MODEL
        self.model_id = model_id

    async def invoke(
        self,
        messages: Sequence[Message],
        max_tokens: int,
        temperature: float,
        tools: Optional[Sequence[ToolSpec]] = None,
    ) -> BackendResult:
        """Generate a completion using Gemini."""
        payload = self._build_chat_payload(messages, max_tokens, temperature, tools)

        url = f"/models/{self.model}:generateContent"

        try:
            response = await self.client.post(
                url,
                json=payload,
                # Header rather than ?key= so the key never lands in URL logs
                headers={"x-goog-api-key": self.api_key},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise self._handle_error(e) from e

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError(self.name, "Gemini returned invalid JSON") from e

        return self._parse_chat_response(data)

    # ============================================================
    # Private helper methods
    # ============================================================

    def _build_chat_payload(
        self,
        messages: Sequence[Message],
        max_tokens: int,
        temperature: float,
        tools: Optional[Sequence[ToolSpec]],
    ) -> Dict[str, Any]:
        """Build Gemini-specific chat payload."""
        payload: Dict[str, Any] = {
            "contents": self._convert_messages(messages),
            "generationConfig": {
                "maxOutputTokens": max_tokens,
                "temperature": temperature,
            },
        }

        if tools:
            payload["tools"] = [{"functionDeclarations": self._convert_tools(tools)}]

        system_instruction = self._extract_system_instruction(messages)
        if system_instruction:
            payload["systemInstruction"] = {
                "parts": [{"text": system_instruction}]
            }

        return payload

    def _extract_system_instruction(self, messages: Sequence[Message]) -> Optional[str]:
        """Join all system messages into one instruction."""
        parts = [m.content for m in messages if m.role == Role.SYSTEM]
        return "\n".join(parts) if parts else None

    def _convert_messages(self, messages: Sequence[Message]) -> List[Dict[str, Any]]:
        """Convert messages to Gemini contents; system messages are handled separately."""
        result = []
        for msg in messages:
            if msg.role == Role.SYSTEM:
                continue
            role = "model" if msg.role == Role.ASSISTANT else "user"
            result.append({"role": role, "parts": [{"text": msg.content}]})
        return result

    def _convert_tools(self, tools: Sequence[ToolSpec]) -> List[Dict[str, Any]]:
        """Convert tools to Gemini function declarations (upper-case JSON types)."""
        declarations = []
        for tool in tools:
            params = tool.parameters or {}
            properties = {}
            for key, value in (params.get("properties") or {}).items():
                if not isinstance(value, dict):
                    value = {}
                prop: Dict[str, Any] = {"type": str(value.get("type", "string")).upper()}
                if value.get("description"):
                    prop["description"] = value["description"]
                properties[key] = prop

            declarations.append({
                "name": tool.name,
                "description": tool.description,
                "parameters": {
                    "type": "OBJECT",
                    "properties": properties,
                    "required": list(params.get("required") or []),
                },
            })
        return declarations

    def _parse_chat_response(self, data: Dict[str, Any]) -> BackendResult:
        """Concatenate text parts and collect function calls from the first candidate."""
        candidates = data.get("candidates") or []

        text_content = ""
        raw_calls = []
        if candidates:
            parts = (candidates[0].get("content") or {}).get("parts") or []
            for part in parts:
                if "functionCall" in part:
                    raw_calls.append(part["functionCall"])
                elif part.get("text"):
                    text_content += part["text"]

        function_calls = self._parse_function_calls(raw_calls)

        if not text_content and not function_calls:
            raise UpstreamError(self.name, "Gemini returned empty response")

        return BackendResult(
            content=text_content,
            function_calls=tuple(function_calls),
        )

    def _handle_error(self, error: httpx.HTTPStatusError):
        """Convert HTTP error to a typed LFO exception."""
        status_code = error.response.status_code
        error_info = self._error_body(error.response)
        upstream_message = error_info.get("message")

        if status_code == 401 or self._is_invalid_key(error_info):
            return PermanentAuthOrQuotaError(
                self.name,
                "Gemini API key is invalid or revoked. Check GEMINI_API_KEY.",
                upstream_message=upstream_message,
            )

        if status_code == 403:
            return PermanentAuthOrQuotaError(
                self.name,
                "Gemini API quota exceeded. Check your API key and billing.",
                quota=True,
                upstream_message=upstream_message,
            )

        if status_code == 429:
            retry_after = error.response.headers.get("retry-after")
            return RateLimitedError(
                self.name,
                "Gemini rate limit exceeded. Please try again later.",
                retry_after=int(retry_after) if retry_after and retry_after.isdigit() else None,
                upstream_message=upstream_message,
            )

        logger.warning(
            "Gemini request failed",
            upstream_status=status_code,
            upstream_error=error_info.get("status"),
        )
        return UpstreamError(
            self.name,
            upstream_message or f"Gemini HTTP {status_code}",
            upstream_status=status_code,
        )

    @staticmethod
    def _error_body(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        if not isinstance(body, dict) or not isinstance(body.get("error"), dict):
            return {}
        return body["error"]

    @staticmethod
    def _is_invalid_key(error_info: Dict[str, Any]) -> bool:
        # Gemini answers a bad key with 400 + reason API_KEY_INVALID
        for detail in error_info.get("details") or []:
            if isinstance(detail, dict) and detail.get("reason") == "API_KEY_INVALID":
                return True
        return False
