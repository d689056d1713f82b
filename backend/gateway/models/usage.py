"""
Usage ledger model

One row per gateway request, written after the request completes or fails.
Rows are never updated or deleted by the gateway.
"""
from sqlalchemy import (
    Column, String, Integer, Float, DateTime, ForeignKey, Index
)
from sqlalchemy.orm import relationship

from .base import Base, generate_uuid, utcnow


class APIUsage(Base):
    """Append-only record of a single /v1 request"""
    __tablename__ = "api_usage"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    api_key_id = Column(String(36), ForeignKey("api_keys.id"), nullable=False)

    endpoint = Column(String(100), nullable=False)  # e.g. "chat/completions"
    model = Column(String(100), nullable=True)
    tokens_used = Column(Integer, nullable=True)
    cost = Column(Float, nullable=True)  # USD

    request_time = Column(Integer, nullable=False, default=0)  # milliseconds
    status_code = Column(Integer, nullable=False)

    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(500), nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)

    api_key = relationship("APIKey", back_populates="usage")

    __table_args__ = (
        Index("idx_usage_key_created", "api_key_id", "created_at"),
        Index("idx_usage_endpoint_model", "endpoint", "model"),
    )
