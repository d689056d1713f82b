"""
Fine-tuning job model
"""
from sqlalchemy import (
    Column, String, Integer, DateTime, ForeignKey, Enum, JSON, Index
)

from .base import Base, FineTuningStatus, utcnow


class FineTuningJob(Base):
    """
    A fine-tuning job created through /v1/fine-tuning/jobs.

    Status only moves forward along the transitions defined in
    gateway.services.fine_tuning; the background worker drives it.
    """
    __tablename__ = "fine_tuning_jobs"

    id = Column(String(64), primary_key=True)  # ftjob-<hex>
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    api_key_id = Column(String(36), ForeignKey("api_keys.id", ondelete="SET NULL"), nullable=True)
    organization_id = Column(String(64), nullable=False)

    model = Column(String(100), nullable=False)
    training_file = Column(String(255), nullable=False)
    validation_file = Column(String(255), nullable=True)
    hyperparameters = Column(JSON, default=dict)
    suffix = Column(String(64), nullable=True)

    status = Column(Enum(FineTuningStatus), nullable=False, default=FineTuningStatus.QUEUED)
    fine_tuned_model = Column(String(255), nullable=True)
    trained_tokens = Column(Integer, nullable=True)
    result_files = Column(JSON, default=list)
    error = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)
    estimated_finish = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_ft_job_user_created", "user_id", "created_at"),
        Index("idx_ft_job_status", "status"),
    )
