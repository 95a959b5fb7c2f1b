"""
Subscription plan and organization subscription models.

Plans carry an open ``features`` JSONB payload; the summarization engine reads
its ``memory_summarization`` section and feature flags (see
services.summarization_config).
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, ForeignKey, Index, String
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from models.database import Base
from services.memory_types import PlanRecord, SubscriptionRecord


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    tier: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)  # 'free' | 'pro' | 'enterprise'
    features: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=True
    )

    def to_record(self) -> PlanRecord:
        return PlanRecord(
            id=str(self.id),
            name=self.name,
            tier=self.tier,
            features=dict(self.features) if self.features is not None else None,
        )


class OrganizationSubscription(Base):
    __tablename__ = "organization_subscriptions"
    __table_args__ = (
        Index("ix_organization_subscriptions_org_status", "organization_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    subscription_plan_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("subscription_plans.id"), nullable=False
    )
    # 'active', 'trialing', 'canceled', 'past_due', ...
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=True
    )

    def to_record(self) -> SubscriptionRecord:
        return SubscriptionRecord(
            organization_id=str(self.organization_id),
            subscription_plan_id=str(self.subscription_plan_id),
            status=self.status,
        )
