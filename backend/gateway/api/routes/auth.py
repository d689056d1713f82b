"""
Dashboard authentication routes
"""
from fastapi import APIRouter, Depends, HTTPException, status, Request
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from gateway.db.database import get_db
from gateway.services.auth import AuthService
from gateway.services.rate_limiter import FixedWindowRateLimiter, get_rate_limiter
from gateway.api.schemas import (
    UserCreate, UserLogin, UserResponse, LoginResponse, RegisterResponse, APIKeyCreatedResponse,
)
from gateway.api.dependencies import get_current_user, client_ip
from gateway.core.config import settings
from gateway.core.logging import log_security_event
from gateway.models import User, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Authentication"])


@router.post("/register", response_model=RegisterResponse)
async def register(
    user_data: UserCreate,
    db: AsyncSession = Depends(get_db),
):
    """Register a new account. A default API key is created with it."""

    existing = await AuthService.get_user_by_email(db, user_data.email)
    if existing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered",
        )

    user = await AuthService.create_user(
        db=db,
        email=user_data.email,
        password=user_data.password,
        name=user_data.name,
    )
    api_key = await AuthService.create_api_key(db, user, name="Default Key")

    await db.commit()
    await db.refresh(user)
    logger.info(f"Registered user {user.email}")

    return RegisterResponse(
        access_token=AuthService.create_token(user),
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserResponse.model_validate(user),
        api_key=APIKeyCreatedResponse.model_validate(api_key),
    )


@router.post("/login", response_model=LoginResponse)
async def login(
    credentials: UserLogin,
    request: Request,
    db: AsyncSession = Depends(get_db),
    limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
):
    """Login with email/password"""

    # Rate limit by IP address
    ip_address = client_ip(request) or "unknown"
    decision = await limiter.check_and_increment(
        f"login:{ip_address}",
        settings.LOGIN_RATE_LIMIT,
        settings.LOGIN_RATE_WINDOW_SECONDS,
    )
    if not decision.allowed:
        log_security_event("login_rate_limited", ip_address=ip_address, success=False)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Too many login attempts. Try again in {decision.retry_after} seconds.",
            headers={"Retry-After": str(decision.retry_after)},
        )

    user = await AuthService.authenticate_user(
        db=db,
        email=credentials.email,
        password=credentials.password,
    )

    if not user:
        log_security_event("login", ip_address=ip_address, success=False, email=credentials.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is disabled",
        )

    user.last_login = utcnow()
    await db.commit()

    log_security_event("login", user_id=user.id, ip_address=ip_address)
    return LoginResponse(
        access_token=AuthService.create_token(user),
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserResponse.model_validate(user),
    )


@router.get("/me", response_model=UserResponse)
async def get_me(
    user: User = Depends(get_current_user),
):
    """Get current user profile"""
    return user
