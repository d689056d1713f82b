"""
OpenAI-compatible /v1/models endpoint

Lists the OpenAI model names the gateway accepts. Each one is served by an
upstream model; the mapping is not exposed.
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from gateway.api.dependencies import ApiKeyAuth, get_api_key_auth
from gateway.api.errors import NotFoundError
from gateway.services.model_catalog import ModelConfig, get_model_config, list_models as catalog_models

logger = logging.getLogger(__name__)

router = APIRouter()


# === Schemas (OpenAI-compatible) ===

class ModelObject(BaseModel):
    """OpenAI-compatible model object"""
    id: str
    object: str = "model"
    created: int
    owned_by: str
    root: Optional[str] = None
    parent: Optional[str] = None


class ModelsListResponse(BaseModel):
    """OpenAI-compatible models list response"""
    object: str = "list"
    data: List[ModelObject]


def _model_object(config: ModelConfig) -> ModelObject:
    return ModelObject(
        id=config.id,
        created=config.created,
        owned_by=config.owned_by,
        root=config.id,
    )


# === Endpoints ===

@router.get("/models", response_model=ModelsListResponse)
async def list_models(
    auth: ApiKeyAuth = Depends(get_api_key_auth),
):
    """
    List available models.

    **Authentication:**
    - Header: `Authorization: Bearer sk-...`
    """
    return ModelsListResponse(data=[_model_object(m) for m in catalog_models()])


@router.get("/models/{model_id}", response_model=ModelObject)
async def get_model(
    model_id: str,
    auth: ApiKeyAuth = Depends(get_api_key_auth),
):
    """Retrieve a single model"""
    config = get_model_config(model_id)
    if config is None:
        raise NotFoundError(f"The model '{model_id}' does not exist", code="model_not_found")
    return _model_object(config)
