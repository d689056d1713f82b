"""
OpenAI-Compatible API v1 Routes

Drop-in replacement endpoints for the OpenAI API:
- GET  /v1/models
- GET  /v1/models/{model}
- POST /v1/chat/completions
- POST /v1/images/generations
- POST /v1/embeddings
- POST /v1/moderations
- POST /v1/fine-tuning/jobs
- GET  /v1/fine-tuning/jobs
- GET  /v1/fine-tuning/jobs/{id}
- POST /v1/fine-tuning/jobs/{id}/cancel
"""
from fastapi import APIRouter

from .models import router as models_router
from .completions import router as completions_router
from .images import router as images_router
from .embeddings import router as embeddings_router
from .moderations import router as moderations_router
from .fine_tuning import router as fine_tuning_router

router = APIRouter(prefix="/v1", tags=["OpenAI Compatible API"])

router.include_router(models_router)
router.include_router(completions_router)
router.include_router(images_router)
router.include_router(embeddings_router)
router.include_router(moderations_router)
router.include_router(fine_tuning_router)

__all__ = ["router"]
