"""
User-related models

Contains:
- User: Dashboard account that owns API keys
- APIKey: Secret bearer token for the /v1 endpoints
"""
from sqlalchemy import (
    Column, String, Integer, Boolean, DateTime, ForeignKey, Index
)
from sqlalchemy.orm import relationship

from .base import Base, generate_uuid, utcnow


class User(Base):
    """
    Dashboard user account.

    Signs in with email/password and owns one or more API keys.
    """
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    hashed_password = Column(String(255), nullable=True)

    # Account status
    is_active = Column(Boolean, default=True)
    is_admin = Column(Boolean, default=False)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    last_login = Column(DateTime, nullable=True)

    api_keys = relationship("APIKey", back_populates="user", cascade="all, delete-orphan")


class APIKey(Base):
    """
    API key used as `Authorization: Bearer <key>` on the /v1 endpoints.

    Each key belongs to exactly one user and carries its own hourly quota.
    Usage rows reference the key and are kept when it is deactivated or
    deleted; deleting a key only stamps `deleted_at`.
    """
    __tablename__ = "api_keys"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    key = Column(String(128), unique=True, nullable=False)
    name = Column(String(100), nullable=False)

    # Requests allowed per rate-limit window
    rate_limit = Column(Integer, default=1000, nullable=False)

    # Status
    is_active = Column(Boolean, default=True, nullable=False)
    last_used_at = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="api_keys")
    usage = relationship("APIUsage", back_populates="api_key", passive_deletes=True)

    __table_args__ = (
        Index("idx_api_key_user", "user_id"),
    )

    @property
    def masked_key(self) -> str:
        """First 10 characters followed by an ellipsis"""
        return f"{self.key[:10]}..."
