"""Lineage edges between memories (summary -> source)."""
from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from models.database import Base
from services.memory_types import MemoryRelationshipRecord


class MemoryRelationship(Base):
    """Directed edge recording that ``from_id`` was derived from ``to_id``."""

    __tablename__ = "memory_relationships"
    __table_args__ = (
        Index("ix_memory_relationships_org_from", "organization_id", "from_id"),
        Index("ix_memory_relationships_org_to", "organization_id", "to_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    # Stored redundantly so lineage can be queried without joining memories
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    from_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("memories.id", ondelete="CASCADE"), nullable=False
    )
    to_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("memories.id", ondelete="CASCADE"), nullable=False
    )
    relationship_type: Mapped[str] = mapped_column(String(30), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    @classmethod
    def from_record(cls, record: MemoryRelationshipRecord) -> "MemoryRelationship":
        return cls(
            id=uuid.UUID(record.id),
            organization_id=uuid.UUID(record.organization_id),
            from_id=uuid.UUID(record.from_id),
            to_id=uuid.UUID(record.to_id),
            relationship_type=record.relationship_type,
            created_at=record.created_at,
        )
