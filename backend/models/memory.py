"""Memory model for tenant knowledge records (facts, preferences, feedback, summaries)."""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from pgvector.sqlalchemy import Vector
from sqlalchemy import DateTime, Float, ForeignKey, Index, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from models.database import Base
from services.memory_types import MemoryRecord, MemoryType

EMBEDDING_DIMENSIONS = 1536


class Memory(Base):
    """A single memory scoped to an organization and optionally a user."""

    __tablename__ = "memories"
    __table_args__ = (
        Index("ix_memories_org_user", "organization_id", "user_id"),
        Index("ix_memories_org_created", "organization_id", "created_at"),
        Index("ix_memories_summary_id", "summary_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    content_embedding: Mapped[Optional[list[float]]] = mapped_column(
        Vector(EMBEDDING_DIMENSIONS), nullable=True
    )
    memory_type: Mapped[Optional[str]] = mapped_column(
        String(30), nullable=True
    )  # see services.memory_types.MemoryType
    importance_score: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    # "metadata" is reserved on declarative classes
    memory_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONB, nullable=False, default=dict
    )
    # Set on source memories once they have been folded into a summary
    summary_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    def to_record(self) -> MemoryRecord:
        """Convert to the plain value used by the summarization pipeline."""
        memory_type: Optional[MemoryType] = None
        if self.memory_type:
            try:
                memory_type = MemoryType(self.memory_type)
            except ValueError:
                memory_type = None
        embedding = self.content_embedding
        return MemoryRecord(
            id=str(self.id),
            organization_id=str(self.organization_id),
            user_id=str(self.user_id) if self.user_id else None,
            content=self.content,
            content_embedding=[float(v) for v in embedding] if embedding is not None else None,
            memory_type=memory_type,
            importance_score=self.importance_score,
            metadata=dict(self.memory_metadata or {}),
            summary_id=str(self.summary_id) if self.summary_id else None,
            created_at=self.created_at,
        )

    @classmethod
    def from_record(cls, record: MemoryRecord) -> "Memory":
        return cls(
            id=uuid.UUID(record.id),
            organization_id=uuid.UUID(record.organization_id),
            user_id=uuid.UUID(record.user_id) if record.user_id else None,
            content=record.content,
            content_embedding=record.content_embedding,
            memory_type=record.memory_type.value if record.memory_type else None,
            importance_score=record.importance_score,
            memory_metadata=dict(record.metadata),
            summary_id=uuid.UUID(record.summary_id) if record.summary_id else None,
            created_at=record.created_at,
        )
