"""
OpenAI-compatible /v1/moderations endpoint
"""
import logging
import uuid
from typing import Any, Dict, List, Union

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

ENDPOINT = "moderations"

CATEGORIES = (
    "sexual",
    "hate",
    "harassment",
    "self_harm",
    "sexual_minors",
    "hate_threatening",
    "violence_graphic",
    "self_harm_intent",
    "self_harm_instructions",
    "harassment_threatening",
    "violence",
)


# === Schemas (OpenAI-compatible) ===

class ModerationRequest(BaseModel):
    input: Union[str, List[str]] = Field(..., description="Text(s) to classify")
    model: str = "text-moderation-latest"


class ModerationResult(BaseModel):
    flagged: bool
    categories: Dict[str, bool]
    category_scores: Dict[str, float]


class ModerationResponse(BaseModel):
    id: str
    model: str
    results: List[ModerationResult]


# === Helper Functions ===

def _normalize_keys(values: Dict[str, Any]) -> Dict[str, Any]:
    """`self-harm/intent` and `self_harm_intent` name the same category"""
    return {key.replace("/", "_").replace("-", "_"): value for key, value in (values or {}).items()}


def shape_result(result: Dict[str, Any]) -> ModerationResult:
    """Project an upstream result onto the eleven OpenAI categories"""
    categories = _normalize_keys(result.get("categories"))
    scores = _normalize_keys(result.get("category_scores"))

    shaped_categories = {name: bool(categories.get(name) or False) for name in CATEGORIES}
    shaped_scores = {name: float(scores.get(name) or 0.0) for name in CATEGORIES}

    return ModerationResult(
        flagged=bool(result.get("flagged")) or any(shaped_categories.values()),
        categories=shaped_categories,
        category_scores=shaped_scores,
    )


# === Endpoints ===

@router.post("/moderations", response_model=ModerationResponse)
async def create_moderation(
    body: ModerationRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    auth: ApiKeyAuth = Depends(metered(ENDPOINT)),
    upstream: UpstreamClient = Depends(get_upstream_client),
    recorder: UsageRecorder = Depends(get_usage_recorder),
):
    """
    Classify text against the OpenAI moderation categories.

    Compatible with OpenAI's /v1/moderations endpoint.
    """
    request.state.usage_model = body.model

    inputs: List[str] = [body.input] if isinstance(body.input, str) else body.input
    if not inputs or not any(inputs):
        raise InvalidRequestError("Missing required field: input is required")

    response = await upstream.moderate(map_to_upstream_model(body.model, "moderation"), body.input)

    results = response.get("results") or []
    if len(results) < len(inputs):
        raise UpstreamError(
            f"Upstream returned {len(results)} moderation results for {len(inputs)} inputs"
        )

    total_tokens = sum(estimate_tokens(text) for text in inputs)
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

    return ModerationResponse(
        id=response.get("id") or f"modr-{uuid.uuid4()}",
        model=body.model,
        results=[shape_result(r) for r in results[:len(inputs)]],
    )
