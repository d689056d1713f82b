"""
Dashboard usage reads

Both endpoints are cached per user for DASHBOARD_CACHE_TTL seconds.
"""
from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from gateway.db.database import get_db
from gateway.models import User
from gateway.api.dependencies import get_current_user
from gateway.api.schemas import OverviewResponse, UsageResponse
from gateway.core.config import settings
from gateway.services.cache import cache
from gateway.services.usage import UsageService

router = APIRouter(tags=["Dashboard"])


@router.get("/overview", response_model=OverviewResponse)
async def get_overview(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Last-30-day totals, growth, recent requests, top endpoints and keys"""
    cache_key = f"overview:{current_user.id}"
    cached = cache.get(cache_key)
    if cached is not None:
        return cached

    data = OverviewResponse(**await UsageService.get_overview(db, current_user))
    cache.set(cache_key, data, settings.DASHBOARD_CACHE_TTL)
    return data


@router.get("/usage", response_model=UsageResponse)
async def get_usage(
    period: Literal["day", "week", "month", "year"] = "month",
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Usage totals, per endpoint/model breakdown and paginated history"""
    cache_key = f"usage:{current_user.id}:{period}:{limit}:{offset}"
    cached = cache.get(cache_key)
    if cached is not None:
        return cached

    data = UsageResponse(**await UsageService.get_usage(db, current_user, period, limit, offset))
    cache.set(cache_key, data, settings.DASHBOARD_CACHE_TTL)
    return data
