"""
Pydantic schemas for the dashboard API
"""
from pydantic import BaseModel, EmailStr, Field
from typing import Optional, List
from datetime import datetime

from gateway.core.config import settings


# ============ Auth Schemas ============

class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    name: Optional[str] = Field(default=None, max_length=255)


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserResponse(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    is_admin: bool = False
    created_at: datetime

    class Config:
        from_attributes = True


class LoginResponse(BaseModel):
    """Login response includes user data"""
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


class RegisterResponse(LoginResponse):
    """Registration also hands back the default key, shown only once"""
    api_key: "APIKeyCreatedResponse"


# ============ API Key Schemas ============

class APIKeyCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    rate_limit: int = Field(ge=1, le=settings.MAX_KEY_RATE_LIMIT)


class APIKeyUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    is_active: Optional[bool] = None
    rate_limit: Optional[int] = Field(default=None, ge=1, le=settings.MAX_KEY_RATE_LIMIT)


class APIKeyResponse(BaseModel):
    id: str
    key: str
    name: str
    is_active: bool
    rate_limit: int
    created_at: datetime
    last_used_at: Optional[datetime] = None
    usage_count: int = 0


class APIKeyCreatedResponse(BaseModel):
    """Returned once at creation, with the full secret"""
    id: str
    key: str
    name: str
    is_active: bool
    rate_limit: int
    created_at: datetime

    class Config:
        from_attributes = True


class APIKeyUpdatedResponse(BaseModel):
    """Update response; the secret is masked"""
    id: str
    key: str
    name: str
    is_active: bool
    rate_limit: int
    updated_at: Optional[datetime] = None


# ============ Usage Schemas ============

class UsageRow(BaseModel):
    id: str
    endpoint: str
    model: Optional[str] = None
    cost: Optional[float] = None
    status_code: int
    request_time: int
    api_key_name: Optional[str] = None
    created_at: datetime


class UsageBreakdown(BaseModel):
    endpoint: str
    model: Optional[str] = None
    requests: int
    tokens_used: int = 0
    cost: float = 0
    avg_response_time: int = 0


class OverviewStats(BaseModel):
    total_requests: int
    total_cost: float
    total_tokens: int
    avg_response_time: int
    active_keys: int
    total_keys: int


class OverviewGrowth(BaseModel):
    requests: int
    last_24_hours: int
    last_7_days: int


class OverviewKey(BaseModel):
    id: str
    name: str
    is_active: bool
    created_at: datetime
    last_used_at: Optional[datetime] = None


class TopEndpoint(BaseModel):
    endpoint: str
    model: Optional[str] = None
    requests: int
    cost: float = 0
    tokens_used: int = 0


class OverviewResponse(BaseModel):
    stats: OverviewStats
    growth: OverviewGrowth
    recent_usage: List[UsageRow]
    top_endpoints: List[TopEndpoint]
    api_keys: List[OverviewKey]


class KeyUsageResponse(BaseModel):
    """Per-key totals for a period"""
    period: str
    total_requests: int
    total_cost: float
    breakdown: List[UsageBreakdown]


class UsageSummary(BaseModel):
    successful_requests: int
    failed_requests: int
    success_rate: float


class UsageResponse(BaseModel):
    period: str
    total_requests: int
    total_cost: float
    total_tokens: int
    avg_response_time: int
    breakdown: List[UsageBreakdown]
    recent_usage: List[UsageRow]
    summary: UsageSummary


# Forward reference resolution
RegisterResponse.model_rebuild()
