"""
SQLAlchemy-backed stores for the memory summarization pipeline.

Every tenant-scoped read and write goes through get_session(organization_id=...)
so RLS applies, and every query also filters on organization_id explicitly.
Only the subscription plan catalog and the cross-organization job dispatcher
use an admin session.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import Select, func, select, update

from config import settings
from models.database import get_admin_session, get_session
from models.memory import Memory
from models.memory_relationship import MemoryRelationship
from models.scheduled_job import ScheduledJob
from models.subscription import OrganizationSubscription, SubscriptionPlan
from services.memory_types import (
    MemoryRecord,
    MemoryRelationshipRecord,
    PlanRecord,
    ScheduledJobRecord,
    SubscriptionRecord,
)
from services.summarization_config import ACTIVE_SUBSCRIPTION_STATUSES

logger = logging.getLogger(__name__)


def eligible_memories_query(
    organization_id: UUID,
    user_id: Optional[UUID],
    created_before: datetime,
    limit: int,
) -> Select:
    """
    Memories that may be folded into a summary: not yet summarized, not a
    summary themselves, with non-empty content, older than ``created_before``,
    newest first. Every exclusion is applied before the limit.
    """
    query = (
        select(Memory)
        .where(Memory.organization_id == organization_id)
        .where(Memory.summary_id.is_(None))
        .where(Memory.memory_metadata["is_summary"].as_boolean().is_not(True))
        .where(func.length(func.trim(Memory.content)) > 0)
        .where(Memory.created_at < created_before)
        .order_by(Memory.created_at.desc())
        .limit(limit)
    )
    if user_id:
        query = query.where(Memory.user_id == user_id)
    return query


def is_due(job: ScheduledJobRecord, now: datetime) -> bool:
    """A job is due if it never ran or its interval has elapsed since the last run."""
    if job.last_run_at is None:
        return True
    return job.last_run_at + timedelta(hours=job.interval_hours) <= now


class SqlMemoryStore:
    """MemoryStore over the ``memories`` and ``memory_relationships`` tables."""

    def __init__(
        self,
        min_age_hours: Optional[int] = None,
        fetch_limit: Optional[int] = None,
    ) -> None:
        self._min_age_hours = (
            min_age_hours if min_age_hours is not None else settings.SUMMARIZATION_MIN_MEMORY_AGE_HOURS
        )
        self._fetch_limit = fetch_limit or settings.SUMMARIZATION_FETCH_LIMIT

    async def fetch_eligible_memories(
        self, organization_id: str, user_id: Optional[str] = None
    ) -> list[MemoryRecord]:
        created_before = datetime.utcnow() - timedelta(hours=self._min_age_hours)
        query = eligible_memories_query(
            UUID(organization_id),
            UUID(user_id) if user_id else None,
            created_before,
            self._fetch_limit,
        )

        async with get_session(organization_id=organization_id) as session:
            result = await session.execute(query)
            rows = result.scalars().all()

        records = [row.to_record() for row in rows]
        # Summaries are never re-summarized by the same pass
        return [r for r in records if r.content and r.content.strip() and not r.is_summary]

    async def insert_memory(self, memory: MemoryRecord) -> str:
        async with get_session(organization_id=memory.organization_id) as session:
            session.add(Memory.from_record(memory))
            await session.commit()
        return memory.id

    async def insert_relationships(
        self, relationships: list[MemoryRelationshipRecord]
    ) -> None:
        if not relationships:
            return
        organization_ids = {r.organization_id for r in relationships}
        if len(organization_ids) != 1:
            raise ValueError("Relationships in one insert must belong to a single organization")
        organization_id = organization_ids.pop()

        async with get_session(organization_id=organization_id) as session:
            session.add_all([MemoryRelationship.from_record(r) for r in relationships])
            await session.commit()

    async def mark_summarized(
        self, memory_ids: list[str], summary_id: str, organization_id: str
    ) -> None:
        if not memory_ids:
            return
        async with get_session(organization_id=organization_id) as session:
            await session.execute(
                update(Memory)
                .where(Memory.organization_id == UUID(organization_id))
                .where(Memory.id.in_([UUID(m) for m in memory_ids]))
                .values(summary_id=UUID(summary_id))
            )
            await session.commit()


class SqlSubscriptionStore:
    """SubscriptionStore over ``organization_subscriptions`` and ``subscription_plans``."""

    async def get_subscription_for_organization(
        self, organization_id: str
    ) -> Optional[SubscriptionRecord]:
        async with get_session(organization_id=organization_id) as session:
            result = await session.execute(
                select(OrganizationSubscription)
                .where(OrganizationSubscription.organization_id == UUID(organization_id))
                .where(OrganizationSubscription.status.in_(ACTIVE_SUBSCRIPTION_STATUSES))
                .order_by(OrganizationSubscription.created_at.desc())
                .limit(1)
            )
            subscription = result.scalar_one_or_none()
            return subscription.to_record() if subscription else None

    async def get_plan(self, plan_id: str) -> Optional[PlanRecord]:
        # Plans are a global catalog, not tenant data
        async with get_admin_session() as session:
            result = await session.execute(
                select(SubscriptionPlan).where(SubscriptionPlan.id == UUID(plan_id))
            )
            plan = result.scalar_one_or_none()
            return plan.to_record() if plan else None


class SqlJobStore:
    """JobStore over ``scheduled_jobs``."""

    async def insert_scheduled_job(
        self,
        organization_id: str,
        interval_hours: int,
        job_type: str,
        config: dict[str, Any],
    ) -> str:
        job = ScheduledJob(
            id=uuid.uuid4(),
            organization_id=UUID(organization_id),
            job_type=job_type,
            interval_hours=interval_hours,
            status="active",
            config=config,
            last_run_at=None,
        )
        async with get_session(organization_id=organization_id) as session:
            session.add(job)
            await session.commit()
        return str(job.id)

    async def list_due_jobs(self, now: datetime, job_type: str) -> list[ScheduledJobRecord]:
        # Dispatcher spans all organizations
        async with get_admin_session() as session:
            result = await session.execute(
                select(ScheduledJob)
                .where(ScheduledJob.job_type == job_type)
                .where(ScheduledJob.status == "active")
                .order_by(ScheduledJob.created_at)
            )
            jobs = [row.to_record() for row in result.scalars().all()]
        return [job for job in jobs if is_due(job, now)]

    async def mark_job_run(self, job_id: str, run_at: datetime) -> None:
        async with get_admin_session() as session:
            await session.execute(
                update(ScheduledJob)
                .where(ScheduledJob.id == UUID(job_id))
                .values(last_run_at=run_at)
            )
            await session.commit()
