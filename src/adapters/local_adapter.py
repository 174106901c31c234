"""
LFO - Local Backend Adapter

Adapter for the on-device model served over HTTP by the phone bridge.

Request:  POST /completion {messages, max_tokens, temperature, tools?}
Reply:    {text?, error?, function_calls?, confidence?, cloud_handoff?, total_time_ms?}

The device may answer with text OR function calls; a reply with neither
is a failure.
"""

from typing import Any, Dict, Optional, Sequence

import httpx

from .base import AdapterConfig, BaseBackend
from ..core.errors import UnreachableError, UpstreamError
from ..core.models import BackendResult, Message, Target, ToolSpec
from ..observability.logging import get_logger


logger = get_logger(__name__)

DEFAULT_LOCAL_MODEL_ID = "lfo-local-functiongemma"


def _number_or_none(value: Any) -> Optional[float]:
    # bool is an int subclass; a JSON true is not a confidence
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


class LocalBackendAdapter(BaseBackend):
    """
    Adapter for the local (on-device) backend.

    Non-2xx replies, an "error" field, unparseable JSON and empty replies
    all surface as generic backend failures.
    """

    name = Target.LOCAL.value

    def __init__(
        self,
        config: AdapterConfig,
        client: Optional[httpx.AsyncClient] = None,
        model_id: str = DEFAULT_LOCAL_MODEL_ID,
    ):
        super().__init__(config, client)
        self.model_id = model_id

    @classmethod
    def from_host(
        cls,
        host: str,
        port: int,
        timeout_seconds: float = 30.0,
        model_id: str = DEFAULT_LOCAL_MODEL_ID,
    ) -> "LocalBackendAdapter":
        """Build an adapter for http://host:port."""
        return cls(
            AdapterConfig(base_url=f"http://{host}:{port}", timeout_seconds=timeout_seconds),
            model_id=model_id,
        )

    async def invoke(
        self,
        messages: Sequence[Message],
        max_tokens: int,
        temperature: float,
        tools: Optional[Sequence[ToolSpec]] = None,
    ) -> BackendResult:
        """Call the device and normalise its reply."""
        body: Dict[str, Any] = {
            "messages": self._messages_payload(messages),
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if tools:
            body["tools"] = [tool.to_dict() for tool in tools]

        try:
            response = await self.client.post("/completion", json=body)
        except httpx.ConnectError as e:
            raise UnreachableError(
                self.name,
                f"Cannot reach local device at {self.config.base_url}. "
                f"Verify ANDROID_HOST and ANDROID_PORT ({e})",
            ) from e

        if not response.is_success:
            raise UpstreamError(
                self.name,
                f"Local backend HTTP {response.status_code}: {response.reason_phrase}",
                upstream_status=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError(self.name, "Local backend returned invalid JSON") from e

        if not isinstance(data, dict):
            raise UpstreamError(self.name, "Local backend returned a non-object reply")

        return self._parse_reply(data)

    def _parse_reply(self, data: Dict[str, Any]) -> BackendResult:
        """Convert the device reply to a BackendResult."""
        if data.get("error"):
            raise UpstreamError(self.name, f"Local backend error: {data['error']}")

        text = data.get("text") if isinstance(data.get("text"), str) else ""
        function_calls = self._parse_function_calls(data.get("function_calls"))

        if not text and not function_calls:
            raise UpstreamError(
                self.name,
                "Local backend response missing both text and function_calls",
            )

        elapsed = _number_or_none(data.get("total_time_ms"))

        result = BackendResult(
            content=text,
            function_calls=tuple(function_calls),
            confidence=_number_or_none(data.get("confidence")),
            cloud_handoff=data.get("cloud_handoff") is True,
            elapsed_ms=int(elapsed) if elapsed is not None else None,
        )

        logger.debug(
            "Local backend replied",
            confidence=result.confidence,
            cloud_handoff=result.cloud_handoff,
            function_call_count=len(function_calls),
            device_time_ms=result.elapsed_ms,
        )
        return result
