"""
OpenAI-compatible /v1/fine-tuning/jobs endpoints

Jobs are created queued and advanced by the fine-tuning worker; these
routes only create, read and cancel them. Jobs are visible to every key of
the user that created them.
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from gateway.api.dependencies import ApiKeyAuth, get_api_key_auth, metered
from gateway.db.database import get_db
from gateway.services.fine_tuning import (
    FineTuningService, get_fine_tuning_service, serialize_job,
)
from gateway.services.usage import UsageRecorder, get_usage_recorder

logger = logging.getLogger(__name__)

router = APIRouter()

ENDPOINT = "fine_tuning/jobs"


# === Schemas (OpenAI-compatible) ===

class Hyperparameters(BaseModel):
    batch_size: Optional[Any] = None
    learning_rate_multiplier: Optional[Any] = None
    n_epochs: Optional[Any] = None
    classification_n_classes: Optional[int] = None
    classification_positive_class: Optional[str] = None
    compute_classification_metrics: Optional[bool] = None
    prompt_loss_weight: Optional[float] = None


class FineTuningJobCreate(BaseModel):
    training_file: str = Field(..., min_length=1)
    model: str = Field(..., min_length=1)
    hyperparameters: Optional[Hyperparameters] = None
    suffix: Optional[str] = Field(default=None, max_length=64)
    validation_file: Optional[str] = None


class FineTuningJobList(BaseModel):
    object: str = "list"
    data: List[Dict[str, Any]]
    has_more: bool
    first_id: Optional[str] = None
    last_id: Optional[str] = None


# === Endpoints ===

@router.post("/fine-tuning/jobs")
async def create_fine_tuning_job(
    body: FineTuningJobCreate,
    request: Request,
    background_tasks: BackgroundTasks,
    auth: ApiKeyAuth = Depends(metered(ENDPOINT)),
    db: AsyncSession = Depends(get_db),
    service: FineTuningService = Depends(get_fine_tuning_service),
    recorder: UsageRecorder = Depends(get_usage_recorder),
):
    """Create a fine-tuning job. It starts out `queued`."""
    request.state.usage_model = body.model

    hyperparameters = None
    if body.hyperparameters:
        hyperparameters = body.hyperparameters.model_dump(exclude_none=True) or None

    job = await service.create_job(
        db,
        auth.user,
        auth.api_key,
        model=body.model,
        training_file=body.training_file,
        validation_file=body.validation_file,
        hyperparameters=hyperparameters,
        suffix=body.suffix,
    )
    await db.commit()

    background_tasks.add_task(
        recorder.record,
        auth.usage_record(ENDPOINT, 200, model=body.model),
    )

    return serialize_job(job)


@router.get("/fine-tuning/jobs", response_model=FineTuningJobList)
async def list_fine_tuning_jobs(
    limit: int = Query(20, ge=1, le=100),
    after: Optional[str] = None,
    auth: ApiKeyAuth = Depends(get_api_key_auth),
    db: AsyncSession = Depends(get_db),
    service: FineTuningService = Depends(get_fine_tuning_service),
):
    """List the caller's jobs, newest first, with cursor pagination"""
    jobs, has_more = await service.list_jobs(db, auth.user, limit=limit, after=after)

    return FineTuningJobList(
        data=[serialize_job(job) for job in jobs],
        has_more=has_more,
        first_id=jobs[0].id if jobs else None,
        last_id=jobs[-1].id if jobs else None,
    )


@router.get("/fine-tuning/jobs/{job_id}")
async def get_fine_tuning_job(
    job_id: str,
    auth: ApiKeyAuth = Depends(get_api_key_auth),
    db: AsyncSession = Depends(get_db),
    service: FineTuningService = Depends(get_fine_tuning_service),
):
    """Poll a job"""
    job = await service.get_job(db, auth.user, job_id)
    return serialize_job(job)


@router.post("/fine-tuning/jobs/{job_id}/cancel")
async def cancel_fine_tuning_job(
    job_id: str,
    auth: ApiKeyAuth = Depends(get_api_key_auth),
    db: AsyncSession = Depends(get_db),
    service: FineTuningService = Depends(get_fine_tuning_service),
):
    """Cancel a queued or running job. Finished jobs are returned unchanged."""
    job = await service.cancel_job(db, auth.user, job_id)
    await db.commit()
    return serialize_job(job)
