"""
OpenAI-compatible /v1/embeddings endpoint
"""
import logging
from typing import List, Optional, Union

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from pydantic import BaseModel, Field

from gateway.api.dependencies import ApiKeyAuth, metered
from gateway.api.errors import InvalidRequestError, UpstreamError
from gateway.services.model_catalog import map_to_upstream_model
from gateway.services.upstream import UpstreamClient, get_upstream_client
from gateway.services.usage import (
    UsageRecorder, get_usage_recorder, estimate_tokens, calculate_token_cost,
)

logger = logging.getLogger(__name__)

router = APIRouter()

ENDPOINT = "embeddings"
MAX_INPUTS = 2048


# === Schemas (OpenAI-compatible) ===

class EmbeddingRequest(BaseModel):
    """OpenAI-compatible embedding request"""
    input: Union[str, List[str]] = Field(..., description="Text(s) to embed")
    model: str = Field(..., min_length=1, description="Model to use")
    encoding_format: Optional[str] = Field(
        default="float",
        description="Encoding format: 'float' or 'base64'"
    )
    dimensions: Optional[int] = Field(
        default=None,
        ge=1,
        description="Dimensions for the output (if model supports)"
    )
    user: Optional[str] = Field(default=None, description="User identifier")


class EmbeddingData(BaseModel):
    """Single embedding result"""
    object: str = "embedding"
    embedding: Union[List[float], str]
    index: int


class EmbeddingUsage(BaseModel):
    """Token usage for embeddings"""
    prompt_tokens: int
    total_tokens: int


class EmbeddingResponse(BaseModel):
    """OpenAI-compatible embedding response"""
    object: str = "list"
    data: List[EmbeddingData]
    model: str
    usage: EmbeddingUsage


# === Endpoints ===

@router.post("/embeddings", response_model=EmbeddingResponse)
async def create_embeddings(
    body: EmbeddingRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    auth: ApiKeyAuth = Depends(metered(ENDPOINT)),
    upstream: UpstreamClient = Depends(get_upstream_client),
    recorder: UsageRecorder = Depends(get_usage_recorder),
):
    """
    Create embeddings for the given input.

    Compatible with OpenAI's /v1/embeddings endpoint.

    **Input:**
    - Single string: Returns one embedding
    - List of strings: Returns embeddings for each string
    """
    request.state.usage_model = body.model

    # Normalize input to list
    inputs: List[str] = [body.input] if isinstance(body.input, str) else body.input

    if not inputs:
        raise InvalidRequestError("Input cannot be empty")
    if len(inputs) > MAX_INPUTS:
        raise InvalidRequestError(f"Maximum {MAX_INPUTS} inputs per request")
    for i, text in enumerate(inputs):
        if not text or not text.strip():
            raise InvalidRequestError(f"Input at index {i} is empty")

    result = await upstream.create_embeddings(
        map_to_upstream_model(body.model, "embedding"),
        body.input,
        dimensions=body.dimensions,
    )

    items = result.get("data") or []
    if len(items) != len(inputs):
        raise UpstreamError(
            f"Upstream returned {len(items)} embeddings for {len(inputs)} inputs"
        )

    embeddings = [
        EmbeddingData(embedding=item["embedding"], index=item.get("index", i))
        for i, item in enumerate(items)
    ]

    usage = result.get("usage") or {}
    prompt_tokens = usage.get("prompt_tokens") or sum(estimate_tokens(text) for text in inputs)
    total_tokens = usage.get("total_tokens") or prompt_tokens

    background_tasks.add_task(
        recorder.record,
        auth.usage_record(
            ENDPOINT,
            200,
            model=body.model,
            tokens_used=total_tokens,
            cost=calculate_token_cost(body.model, total_tokens),
        ),
    )

    return EmbeddingResponse(
        data=embeddings,
        model=body.model,  # Return requested model name for compatibility
        usage=EmbeddingUsage(
            prompt_tokens=prompt_tokens,
            total_tokens=total_tokens,
        ),
    )
