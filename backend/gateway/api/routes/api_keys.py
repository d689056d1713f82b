"""
Dashboard API key management

Keys are created, renamed, re-limited, deactivated and deleted here. Every
change drops the owner's cached dashboard reads.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from typing import List, Literal
import logging

from gateway.db.database import get_db
from gateway.models import User, APIKey, APIUsage, utcnow
from gateway.api.dependencies import get_current_user
from gateway.api.schemas import (
    APIKeyCreate, APIKeyUpdate, APIKeyResponse, APIKeyCreatedResponse, APIKeyUpdatedResponse,
    KeyUsageResponse,
)
from gateway.core.config import settings
from gateway.services.auth import AuthService
from gateway.services.cache import cache, invalidate_user_cache
from gateway.services.usage import UsageService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["API Keys"])


async def _get_owned_key(db: AsyncSession, key_id: str, user: User) -> APIKey:
    result = await db.execute(
        select(APIKey).where(
            APIKey.id == key_id,
            APIKey.user_id == user.id,
            APIKey.deleted_at.is_(None),
        )
    )
    api_key = result.scalar_one_or_none()

    if not api_key:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="API key not found"
        )
    return api_key


@router.get("", response_model=List[APIKeyResponse])
async def list_api_keys(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List the current user's keys, newest first, with request counts"""
    cache_key = f"api-keys:{current_user.id}"
    cached = cache.get(cache_key)
    if cached is not None:
        return cached

    usage_count = (
        select(func.count(APIUsage.id))
        .where(APIUsage.api_key_id == APIKey.id)
        .correlate(APIKey)
        .scalar_subquery()
    )
    result = await db.execute(
        select(APIKey, usage_count)
        .where(APIKey.user_id == current_user.id, APIKey.deleted_at.is_(None))
        .order_by(APIKey.created_at.desc())
    )

    keys = [
        APIKeyResponse(
            id=k.id,
            key=k.key,
            name=k.name,
            is_active=k.is_active,
            rate_limit=k.rate_limit,
            created_at=k.created_at,
            last_used_at=k.last_used_at,
            usage_count=count or 0,
        )
        for k, count in result.all()
    ]

    cache.set(cache_key, keys, settings.DASHBOARD_CACHE_TTL)
    return keys


@router.post("", response_model=APIKeyCreatedResponse)
async def create_api_key(
    request: APIKeyCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a new API key.

    **Important**: the full key is returned in this response. Store it
    securely.
    """
    api_key = await AuthService.create_api_key(
        db,
        current_user,
        name=request.name,
        rate_limit=request.rate_limit,
    )
    await db.commit()
    await db.refresh(api_key)

    invalidate_user_cache(current_user.id)
    logger.info(f"Created API key '{api_key.name}' for user {current_user.id}")

    return APIKeyCreatedResponse.model_validate(api_key)


@router.put("/{key_id}", response_model=APIKeyUpdatedResponse)
async def update_api_key(
    key_id: str,
    update_data: APIKeyUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Update name, active flag or rate limit of a key"""
    api_key = await _get_owned_key(db, key_id, current_user)

    for field, value in update_data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(api_key, field, value)

    await db.commit()
    await db.refresh(api_key)

    invalidate_user_cache(current_user.id)

    return APIKeyUpdatedResponse(
        id=api_key.id,
        key=api_key.masked_key,
        name=api_key.name,
        is_active=api_key.is_active,
        rate_limit=api_key.rate_limit,
        updated_at=api_key.updated_at,
    )


@router.delete("/{key_id}")
async def delete_api_key(
    key_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Delete a key. A user's last remaining key cannot be deleted.

    The key stops authenticating immediately; its usage rows stay in the
    ledger and keep counting towards the owner's totals.
    """
    api_key = await _get_owned_key(db, key_id, current_user)

    key_count = (await db.execute(
        select(func.count(APIKey.id)).where(
            APIKey.user_id == current_user.id, APIKey.deleted_at.is_(None)
        )
    )).scalar()

    if key_count <= 1:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete your only API key"
        )

    api_key.is_active = False
    api_key.deleted_at = utcnow()
    await db.commit()

    invalidate_user_cache(current_user.id)
    logger.info(f"Deleted API key {key_id} for user {current_user.id}")

    return {"message": "API key deleted successfully", "id": key_id}


@router.get("/{key_id}/usage", response_model=KeyUsageResponse)
async def get_api_key_usage(
    key_id: str,
    period: Literal["day", "week", "month", "year"] = "month",
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Usage for one key. Deactivated keys keep their history."""
    api_key = await _get_owned_key(db, key_id, current_user)
    return await UsageService.get_usage_stats(db, api_key.id, period)
