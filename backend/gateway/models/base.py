"""
Base model utilities and enums for the gateway

This module contains:
- SQLAlchemy Base class
- UUID generation utility
- Enum types used across models
"""
from sqlalchemy.orm import declarative_base
from datetime import datetime, timezone
import enum
import uuid

Base = declarative_base()


def generate_uuid() -> str:
    """Generate a new UUID string for model primary keys"""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how SQLite stores DateTime columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# Enums
# =============================================================================

class FineTuningStatus(str, enum.Enum):
    """Lifecycle states of a fine-tuning job"""
    VALIDATING_FILES = "validating_files"
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            FineTuningStatus.SUCCEEDED,
            FineTuningStatus.FAILED,
            FineTuningStatus.CANCELLED,
        )
