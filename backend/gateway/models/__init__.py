"""
Gateway database models

Module Structure:
- base.py: Base class, UUID generator, and enums
- user.py: User, APIKey
- usage.py: APIUsage
- fine_tuning.py: FineTuningJob

Usage:
    from gateway.models import User, APIKey, APIUsage
"""

from .base import Base, generate_uuid, utcnow, FineTuningStatus
from .user import User, APIKey
from .usage import APIUsage
from .fine_tuning import FineTuningJob

__all__ = [
    "Base",
    "generate_uuid",
    "utcnow",
    "FineTuningStatus",
    "User",
    "APIKey",
    "APIUsage",
    "FineTuningJob",
]
