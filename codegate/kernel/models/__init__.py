"""
SQLAlchemy models. Import from here so every table is registered on Base.
"""

from codegate.kernel.models.base import Base, TimestampMixin
from codegate.kernel.models.generation_session import GenerationSession

__all__ = [
    "Base",
    "TimestampMixin",
    "GenerationSession",
]
