"""
ScheduledJob model - declares recurring background work for an organization.

Rows are written by services.summarization_scheduler and consumed by the
Celery beat dispatcher in workers.tasks.summarization.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from models.database import Base
from services.memory_types import ScheduledJobRecord


class ScheduledJob(Base):
    __tablename__ = "scheduled_jobs"
    __table_args__ = (
        Index("ix_scheduled_jobs_type_status", "job_type", "status"),
        Index("ix_scheduled_jobs_org", "organization_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    job_type: Mapped[str] = mapped_column(String(50), nullable=False)
    interval_hours: Mapped[int] = mapped_column(Integer, nullable=False)
    # Status: 'active', 'paused'
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")
    config: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    last_run_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    def to_record(self) -> ScheduledJobRecord:
        return ScheduledJobRecord(
            id=str(self.id),
            organization_id=str(self.organization_id),
            job_type=self.job_type,
            interval_hours=self.interval_hours,
            status=self.status,
            config=dict(self.config or {}),
            last_run_at=self.last_run_at,
            created_at=self.created_at,
        )
