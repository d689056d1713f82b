"""
FastAPI dependencies for authentication and rate limiting

Two kinds of callers:
- dashboard users, authenticated with a JWT session token
- API clients on /v1, authenticated with an API key and rate limited per key
"""
import time
from dataclasses import dataclass, field
from typing import Dict, Optional

from fastapi import Depends, HTTPException, Request, Response, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from gateway.api.errors import AuthenticationError, PermissionDeniedError, RateLimitExceeded
from gateway.core.logging import log_security_event
from gateway.db.database import async_session_maker, get_db
from gateway.models import APIKey, User, utcnow
from gateway.services.auth import AuthService
from gateway.services.rate_limiter import FixedWindowRateLimiter, RateLimitDecision, get_rate_limiter
from gateway.services.usage import UsageRecord


security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Get current dashboard user from JWT token"""

    token = credentials.credentials
    payload = AuthService.decode_token(token)

    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id = payload.get("sub")
    user = await AuthService.get_user_by_id(db, user_id) if user_id else None
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is disabled",
        )

    return user


def client_ip(request: Request) -> Optional[str]:
    """Caller address, preferring the first X-Forwarded-For hop"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


@dataclass
class ApiKeyAuth:
    """Authenticated /v1 caller, attached to request.state.api_key_auth"""
    api_key: APIKey
    user: User
    rate_limit: RateLimitDecision
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    started_at: float = field(default_factory=time.perf_counter)

    @property
    def headers(self) -> Dict[str, str]:
        return self.rate_limit.headers

    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.started_at) * 1000)

    def usage_record(self, endpoint: str, status_code: int, **fields) -> UsageRecord:
        return UsageRecord(
            api_key_id=self.api_key.id,
            endpoint=endpoint,
            status_code=status_code,
            request_time=self.elapsed_ms(),
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            **fields,
        )


def _bearer_token(request: Request) -> str:
    header = request.headers.get("authorization")
    if not header:
        raise AuthenticationError("Missing Authorization header")
    if not header.startswith("Bearer "):
        raise AuthenticationError("Invalid authorization format. Expected: Bearer <api_key>")
    token = header[len("Bearer "):].strip()
    if not token:
        raise AuthenticationError("API key is required")
    return token


async def get_api_key_auth(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
) -> ApiKeyAuth:
    """
    Authenticate a /v1 request by API key and count it against the key's quota.

    Order: key lookup, active checks, rate limit, then the last-used update.
    Rate-limit headers are set on the response and kept on request.state so
    error responses carry them too.
    """
    ip_address = client_ip(request)

    try:
        token = _bearer_token(request)
    except AuthenticationError:
        log_security_event("api_key_auth", ip_address=ip_address, success=False, reason="missing_token")
        raise

    result = await db.execute(
        select(APIKey).options(selectinload(APIKey.user)).where(APIKey.key == token)
    )
    api_key = result.scalar_one_or_none()

    if api_key is None or api_key.deleted_at is not None:
        log_security_event("api_key_auth", ip_address=ip_address, success=False, reason="invalid_key")
        raise AuthenticationError("Invalid API key", code="invalid_key")

    if not api_key.is_active or not api_key.user.is_active:
        log_security_event(
            "api_key_auth",
            api_key_id=api_key.id,
            user_id=api_key.user_id,
            ip_address=ip_address,
            success=False,
            reason="key_deactivated",
        )
        raise PermissionDeniedError("API key is deactivated")

    decision = await limiter.check_and_increment(api_key.id, api_key.rate_limit)
    request.state.rate_limit_headers = decision.headers

    if not decision.allowed:
        log_security_event(
            "rate_limit_exceeded",
            api_key_id=api_key.id,
            user_id=api_key.user_id,
            ip_address=ip_address,
            success=False,
            limit=decision.limit,
        )
        raise RateLimitExceeded(
            retry_after=decision.retry_after,
            message=f"Rate limit exceeded. Maximum {decision.limit} requests per hour.",
            headers=decision.headers,
        )

    # Committed on its own so a later failure in the request keeps the timestamp
    api_key.last_used_at = utcnow()
    await db.commit()

    auth = ApiKeyAuth(
        api_key=api_key,
        user=api_key.user,
        rate_limit=decision,
        ip_address=ip_address,
        user_agent=request.headers.get("user-agent"),
    )
    request.state.api_key_auth = auth
    response.headers.update(decision.headers)
    return auth


def metered(endpoint: str):
    """
    API key auth for an operation that writes to the usage ledger.

    Marks the request with its ledger endpoint name so failures raised after
    authentication, including body validation errors, are recorded too.
    """
    async def dependency(
        request: Request,
        auth: ApiKeyAuth = Depends(get_api_key_auth),
    ) -> ApiKeyAuth:
        request.state.usage_endpoint = endpoint
        return auth

    dependency.usage_endpoint = endpoint
    return dependency


def _route_usage_endpoint(request: Request) -> Optional[str]:
    """Ledger endpoint of the matched route, if it is metered"""
    dependant = getattr(request.scope.get("route"), "dependant", None)
    if dependant is None:
        return None
    for sub_dependant in dependant.dependencies:
        endpoint = getattr(sub_dependant.call, "usage_endpoint", None)
        if endpoint:
            return endpoint
    return None


async def authenticate_unparsed_request(request: Request) -> ApiKeyAuth:
    """
    Run API key auth for a /v1 request whose body failed to decode.

    FastAPI decodes the JSON body before it resolves dependencies, so without
    this a malformed body would be reported ahead of a missing or unknown key.
    Raises the same errors as get_api_key_auth.
    """
    async with async_session_maker() as db:
        auth = await get_api_key_auth(request, Response(), db, get_rate_limiter())

    endpoint = _route_usage_endpoint(request)
    if endpoint:
        request.state.usage_endpoint = endpoint
    return auth
