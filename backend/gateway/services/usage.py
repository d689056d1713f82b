"""
Usage ledger: recording, pricing and aggregation

Recording is best-effort. A failed write never reaches the caller; it is
logged and counted in `UsageRecorder.failed_records`, which the health
endpoint reports.
"""
import math
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from gateway.core.logging import get_logger, log_api_request
from gateway.db.database import async_session_maker
from gateway.models import APIKey, APIUsage, User, utcnow

usage_logger = get_logger("usage")


# Price per 1K tokens (USD)
TOKEN_PRICING: Dict[str, float] = {
    "gpt-3.5-turbo": 0.002,
    "gpt-3.5-turbo-16k": 0.003,
    "gpt-4": 0.03,
    "gpt-4-32k": 0.06,
    "gpt-4-turbo": 0.01,
    "gpt-4o": 0.005,
    "gpt-4o-mini": 0.00015,
    "text-davinci-003": 0.02,
    "text-curie-001": 0.002,
}
DEFAULT_TOKEN_PRICE = 0.002

# Price per generated image (USD)
IMAGE_PRICING: Dict[str, Dict[str, float]] = {
    "dall-e-3": {
        "1024x1024": 0.04,
        "1024x1792": 0.08,
        "1792x1024": 0.08,
    },
    "dall-e-2": {
        "256x256": 0.016,
        "512x512": 0.018,
        "1024x1024": 0.02,
    },
}
DEFAULT_IMAGE_PRICE = 0.04

PERIODS: Dict[str, timedelta] = {
    "day": timedelta(days=1),
    "week": timedelta(days=7),
    "month": timedelta(days=30),
    "year": timedelta(days=365),
}


def estimate_tokens(text: Optional[str]) -> int:
    """Rough token count: one token per four characters, rounded up"""
    if not text:
        return 0
    return math.ceil(len(text) / 4)


def calculate_token_cost(model: str, tokens: int) -> float:
    price = TOKEN_PRICING.get(model, DEFAULT_TOKEN_PRICE)
    return (tokens / 1000) * price


def calculate_image_cost(model: str, size: str) -> float:
    return IMAGE_PRICING.get(model, {}).get(size, DEFAULT_IMAGE_PRICE)


def period_start(period: str, now: Optional[datetime] = None) -> datetime:
    """Start of the lookback window; unknown periods fall back to 30 days"""
    now = now or utcnow()
    return now - PERIODS.get(period, PERIODS["month"])


@dataclass
class UsageRecord:
    """One usage ledger entry before it is persisted"""
    api_key_id: str
    endpoint: str
    status_code: int
    request_time: int  # milliseconds
    model: Optional[str] = None
    tokens_used: Optional[int] = None
    cost: Optional[float] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    error: Optional[str] = None


class UsageRecorder:
    """
    Writes usage records in a session of its own.

    `record` never raises. Write failures are logged through the structured
    logger and counted so they show up in /api/health.
    """

    def __init__(self, session_factory: Optional[Callable] = None):
        self.session_factory = session_factory or async_session_maker
        self.failed_records = 0
        self.recorded = 0

    async def record(self, record: UsageRecord) -> bool:
        log_api_request(
            endpoint=record.endpoint,
            api_key_id=record.api_key_id,
            status_code=record.status_code,
            request_time_ms=record.request_time,
            model=record.model,
            tokens_used=record.tokens_used,
            cost=record.cost,
            error=record.error,
        )

        fields = asdict(record)
        fields.pop("error")
        try:
            async with self.session_factory() as session:
                session.add(APIUsage(**fields))
                await session.commit()
        except Exception as e:
            self.failed_records += 1
            usage_logger.error(
                "Failed to record API usage",
                api_key_id=record.api_key_id,
                endpoint=record.endpoint,
                status_code=record.status_code,
                error=str(e),
                failed_records=self.failed_records,
            )
            return False

        self.recorded += 1
        return True


# Global recorder instance
usage_recorder = UsageRecorder()


def get_usage_recorder() -> UsageRecorder:
    return usage_recorder


def _usage_row(usage: APIUsage, key_name: str) -> Dict[str, Any]:
    return {
        "id": usage.id,
        "endpoint": usage.endpoint,
        "model": usage.model,
        "cost": usage.cost,
        "status_code": usage.status_code,
        "request_time": usage.request_time,
        "api_key_name": key_name,
        "created_at": usage.created_at,
    }


def _avg(total: Optional[float], count: int) -> int:
    return round((total or 0) / count) if count else 0


class UsageService:
    """Read-side aggregations over the usage ledger"""

    @staticmethod
    async def get_usage_stats(
        db: AsyncSession,
        api_key_id: str,
        period: str = "month",
    ) -> Dict[str, Any]:
        """Per-key totals and endpoint/model breakdown for a period"""
        since = period_start(period)
        where = (APIUsage.api_key_id == api_key_id, APIUsage.created_at >= since)

        totals = (await db.execute(
            select(func.count(APIUsage.id), func.sum(APIUsage.cost)).where(*where)
        )).one()

        rows = (await db.execute(
            select(
                APIUsage.endpoint,
                APIUsage.model,
                func.count(APIUsage.id),
                func.sum(APIUsage.tokens_used),
                func.sum(APIUsage.cost),
                func.sum(APIUsage.request_time),
            )
            .where(*where)
            .group_by(APIUsage.endpoint, APIUsage.model)
        )).all()

        return {
            "period": period,
            "total_requests": totals[0] or 0,
            "total_cost": totals[1] or 0,
            "breakdown": [
                {
                    "endpoint": endpoint,
                    "model": model,
                    "requests": count,
                    "tokens_used": tokens or 0,
                    "cost": cost or 0,
                    "avg_response_time": _avg(request_time, count),
                }
                for endpoint, model, count, tokens, cost, request_time in rows
            ],
        }

    @staticmethod
    async def get_overview(db: AsyncSession, user: User) -> Dict[str, Any]:
        """
        Dashboard overview for a user across all of their keys.

        Totals cover the last 30 days; growth compares the last 24 hours,
        scaled to a week, against the last 7 days.
        """
        now = utcnow()
        last_30_days = now - timedelta(days=30)
        last_7_days = now - timedelta(days=7)
        last_24_hours = now - timedelta(hours=24)

        keys = (await db.execute(
            select(APIKey).where(APIKey.user_id == user.id).order_by(APIKey.created_at.desc())
        )).scalars().all()
        key_ids = [k.id for k in keys]
        key_names = {k.id: k.name for k in keys}

        in_keys = APIUsage.api_key_id.in_(key_ids)

        totals = (await db.execute(
            select(
                func.count(APIUsage.id),
                func.sum(APIUsage.cost),
                func.sum(APIUsage.tokens_used),
                func.sum(APIUsage.request_time),
            ).where(in_keys, APIUsage.created_at >= last_30_days)
        )).one()
        total_requests, total_cost, total_tokens, total_time = totals

        count_7d = (await db.execute(
            select(func.count(APIUsage.id)).where(in_keys, APIUsage.created_at >= last_7_days)
        )).scalar() or 0
        count_24h = (await db.execute(
            select(func.count(APIUsage.id)).where(in_keys, APIUsage.created_at >= last_24_hours)
        )).scalar() or 0

        recent = (await db.execute(
            select(APIUsage)
            .where(in_keys)
            .order_by(APIUsage.created_at.desc())
            .limit(10)
        )).scalars().all()

        request_count = func.count(APIUsage.id)
        top = (await db.execute(
            select(
                APIUsage.endpoint,
                APIUsage.model,
                request_count,
                func.sum(APIUsage.cost),
                func.sum(APIUsage.tokens_used),
            )
            .where(in_keys, APIUsage.created_at >= last_30_days)
            .group_by(APIUsage.endpoint, APIUsage.model)
            .order_by(request_count.desc())
            .limit(5)
        )).all()

        growth = round(((count_24h * 7) / count_7d - 1) * 100) if count_7d else 0

        return {
            "stats": {
                "total_requests": total_requests or 0,
                "total_cost": total_cost or 0,
                "total_tokens": total_tokens or 0,
                "avg_response_time": _avg(total_time, total_requests or 0),
                "active_keys": sum(1 for k in keys if k.is_active),
                "total_keys": len(keys),
            },
            "growth": {
                "requests": growth,
                "last_24_hours": count_24h,
                "last_7_days": count_7d,
            },
            "recent_usage": [_usage_row(u, key_names.get(u.api_key_id)) for u in recent],
            "top_endpoints": [
                {
                    "endpoint": endpoint,
                    "model": model,
                    "requests": count,
                    "cost": cost or 0,
                    "tokens_used": tokens or 0,
                }
                for endpoint, model, count, cost, tokens in top
            ],
            "api_keys": [
                {
                    "id": k.id,
                    "name": k.name,
                    "is_active": k.is_active,
                    "created_at": k.created_at,
                    "last_used_at": k.last_used_at,
                }
                for k in keys
                if k.deleted_at is None
            ],
        }

    @staticmethod
    async def get_usage(
        db: AsyncSession,
        user: User,
        period: str = "month",
        limit: int = 100,
        offset: int = 0,
    ) -> Dict[str, Any]:
        """Usage totals, breakdown and paginated history for a user's keys"""
        since = period_start(period)
        owned = select(APIKey.id).where(APIKey.user_id == user.id)
        where = (APIUsage.api_key_id.in_(owned), APIUsage.created_at >= since)

        totals = (await db.execute(
            select(
                func.count(APIUsage.id),
                func.sum(APIUsage.cost),
                func.sum(APIUsage.tokens_used),
                func.sum(APIUsage.request_time),
                func.sum(case((APIUsage.status_code < 400, 1), else_=0)),
                func.sum(case((APIUsage.status_code >= 400, 1), else_=0)),
            ).where(*where)
        )).one()
        total_requests, total_cost, total_tokens, total_time, successful, failed = totals
        total_requests = total_requests or 0
        successful = successful or 0
        failed = failed or 0

        request_count = func.count(APIUsage.id)
        breakdown = (await db.execute(
            select(
                APIUsage.endpoint,
                APIUsage.model,
                request_count,
                func.sum(APIUsage.tokens_used),
                func.sum(APIUsage.cost),
                func.sum(APIUsage.request_time),
            )
            .where(*where)
            .group_by(APIUsage.endpoint, APIUsage.model)
            .order_by(request_count.desc())
        )).all()

        recent = (await db.execute(
            select(APIUsage, APIKey.name)
            .join(APIKey, APIUsage.api_key_id == APIKey.id)
            .where(*where)
            .order_by(APIUsage.created_at.desc())
            .limit(limit)
            .offset(offset)
        )).all()

        outcomes = successful + failed
        success_rate = round(successful / outcomes * 100, 2) if outcomes else 0

        return {
            "period": period,
            "total_requests": total_requests,
            "total_cost": total_cost or 0,
            "total_tokens": total_tokens or 0,
            "avg_response_time": _avg(total_time, total_requests),
            "breakdown": [
                {
                    "endpoint": endpoint,
                    "model": model,
                    "requests": count,
                    "tokens_used": tokens or 0,
                    "cost": cost or 0,
                    "avg_response_time": _avg(request_time, count),
                }
                for endpoint, model, count, tokens, cost, request_time in breakdown
            ],
            "recent_usage": [_usage_row(usage, key_name) for usage, key_name in recent],
            "summary": {
                "successful_requests": successful,
                "failed_requests": failed,
                "success_rate": success_rate,
            },
        }
