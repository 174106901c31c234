"""
LFO - API Dependencies

Shared dependencies for FastAPI routes.
"""

import json
from typing import Any, Dict

from fastapi import Request

from ..core.errors import BadRequestError, PayloadTooLargeError
from ..routing.pipeline import RequestPipeline


# Request bodies above this are refused before JSON decoding
MAX_BODY_BYTES = 2 * 1024 * 1024
MAX_BODY_LABEL = "2mb"


def get_pipeline(request: Request) -> RequestPipeline:
    """Pipeline built by the app factory."""
    return request.app.state.pipeline


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "")


async def read_json_body(request: Request) -> Any:
    """
    Read and decode the request body.

    Raises:
        PayloadTooLargeError: body over MAX_BODY_BYTES
        BadRequestError: body is not valid JSON
    """
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > MAX_BODY_BYTES:
        raise PayloadTooLargeError(MAX_BODY_LABEL)

    body = await request.body()
    if len(body) > MAX_BODY_BYTES:
        raise PayloadTooLargeError(MAX_BODY_LABEL)

    if not body:
        raise BadRequestError(
            "Request body is required",
            request_id=get_request_id(request),
        )

    try:
        return json.loads(body)
    except ValueError:
        raise BadRequestError(
            "Request body is not valid JSON",
            request_id=get_request_id(request),
        )


def add_standard_headers(
    headers: Dict[str, str],
    request_id: str,
    **extra: str,
) -> Dict[str, str]:
    """Add correlation headers plus any extras (keys used verbatim)."""
    if request_id:
        headers["X-Request-Id"] = request_id
    headers.update(extra)
    return headers
