"""
LFO - Models API

OpenAI-compatible model listing. Clients that probe /v1/models at startup
see the two backend model ids.
"""

import time

from fastapi import APIRouter, Depends

from ...routing.pipeline import RequestPipeline
from ..dependencies import get_pipeline
from ..models import ModelCard, ModelListResponse


router = APIRouter(prefix="/v1", tags=["models"])


@router.get("/models", response_model=ModelListResponse)
async def list_models(pipeline: RequestPipeline = Depends(get_pipeline)):
    """List the local and cloud model ids."""
    created = int(time.time())
    return ModelListResponse(
        data=[
            ModelCard(id=pipeline.local.model_id, created=created),
            ModelCard(id=pipeline.cloud.model_id, created=created),
        ]
    )
