"""
Persisted unlock-engine session snapshots.

One row per conversation. The snapshot column holds the full serialized
SessionState; phase and active_artifact_id are denormalized for listing.
"""

from typing import Any, Dict, Optional

from sqlalchemy import JSON, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from codegate.kernel.models.base import Base, TimestampMixin


class GenerationSession(Base, TimestampMixin):
    """Latest snapshot of one conversation's unlock session."""

    __tablename__ = "generation_sessions"

    conversation_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    snapshot: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    phase: Mapped[str] = mapped_column(String(32), nullable=False, default="initial")
    active_artifact_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    schema_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("ix_generation_sessions_phase_updated", "phase", "updated_at"),
    )

    def __repr__(self) -> str:
        return f"<GenerationSession {self.conversation_id} phase={self.phase}>"
