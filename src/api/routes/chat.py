"""
LFO - Chat Completions API

OpenAI-compatible chat completion endpoint with hybrid local/cloud routing.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ...auth.middleware import AuthContext, get_auth_context
from ...core.errors import StreamingNotSupportedError
from ...core.models import response_to_dict
from ...routing.pipeline import RequestPipeline
from ..dependencies import (
    add_standard_headers,
    get_pipeline,
    get_request_id,
    read_json_body,
)


router = APIRouter(prefix="/v1", tags=["chat"])


@router.post("/chat/completions")
async def create_chat_completion(
    request: Request,
    auth: AuthContext = Depends(get_auth_context),
    pipeline: RequestPipeline = Depends(get_pipeline),
):
    """
    Create a chat completion.

    **Routing (metadata.mode):**
    - `auto` (default) - local first; prompts over the token budget go to
      cloud, low-confidence or handoff-flagged local answers escalate to cloud
    - `local` - local backend only
    - `cloud` - cloud backend only

    `metadata.confidence_threshold` (default 0.7) sets the escalation bar.

    **Streaming:** not supported; `stream: true` returns 501.
    """
    payload = await read_json_body(request)

    if isinstance(payload, dict) and payload.get("stream") is True:
        raise StreamingNotSupportedError()

    request_id = get_request_id(request)
    response = await pipeline.handle(payload, request_id)

    headers = add_standard_headers(
        {},
        request_id,
        **{
            "X-LFO-Target": response.target.value,
            "X-LFO-Routing-Reason": response.lfo_metadata.routing_reason,
        }
    )

    return JSONResponse(
        content=response_to_dict(response),
        headers=headers,
    )
