"""In-memory doubles for the memory summarization Protocols."""
from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta
from typing import Any, Optional

from services.memory_types import (
    MemoryRecord,
    MemoryRelationshipRecord,
    MemoryType,
    PlanRecord,
    ScheduledJobRecord,
    SubscriptionRecord,
)

ORG_A = "11111111-1111-1111-1111-111111111111"
ORG_B = "22222222-2222-2222-2222-222222222222"
PLAN_ID = "33333333-3333-3333-3333-333333333333"


class FakeMemoryStore:
    """MemoryStore double that filters by organization like the real store."""

    def __init__(self, memories: Optional[list[MemoryRecord]] = None) -> None:
        self.memories: list[MemoryRecord] = list(memories or [])
        self.inserted: list[MemoryRecord] = []
        self.relationships: list[MemoryRelationshipRecord] = []
        self.marked: list[tuple[list[str], str, str]] = []
        self.fetch_calls: list[tuple[str, Optional[str]]] = []
        self.fail_insert = False
        self.fail_relationships = False
        self.fail_mark = False
        # Return every memory regardless of organization
        self.leak_other_orgs = False

    async def fetch_eligible_memories(
        self, organization_id: str, user_id: Optional[str] = None
    ) -> list[MemoryRecord]:
        self.fetch_calls.append((organization_id, user_id))
        if self.leak_other_orgs:
            return list(self.memories)
        return [
            m
            for m in self.memories
            if m.organization_id == organization_id
            and (user_id is None or m.user_id == user_id)
            and m.summary_id is None
            and not m.is_summary
        ]

    async def insert_memory(self, memory: MemoryRecord) -> str:
        if self.fail_insert:
            raise RuntimeError("insert failed")
        self.inserted.append(memory)
        return memory.id

    async def insert_relationships(
        self, relationships: list[MemoryRelationshipRecord]
    ) -> None:
        if self.fail_relationships:
            raise RuntimeError("relationship insert failed")
        self.relationships.extend(relationships)

    async def mark_summarized(
        self, memory_ids: list[str], summary_id: str, organization_id: str
    ) -> None:
        if self.fail_mark:
            raise RuntimeError("mark failed")
        self.marked.append((list(memory_ids), summary_id, organization_id))
        for memory in self.memories:
            if memory.id in memory_ids and memory.organization_id == organization_id:
                memory.summary_id = summary_id

    @property
    def write_count(self) -> int:
        return len(self.inserted) + len(self.relationships) + len(self.marked)


class FakeSubscriptionStore:
    def __init__(
        self,
        subscriptions: Optional[dict[str, SubscriptionRecord]] = None,
        plans: Optional[dict[str, PlanRecord]] = None,
    ) -> None:
        self.subscriptions = subscriptions or {}
        self.plans = plans or {}
        self.error: Optional[Exception] = None

    async def get_subscription_for_organization(
        self, organization_id: str
    ) -> Optional[SubscriptionRecord]:
        if self.error:
            raise self.error
        return self.subscriptions.get(organization_id)

    async def get_plan(self, plan_id: str) -> Optional[PlanRecord]:
        if self.error:
            raise self.error
        return self.plans.get(plan_id)


class FakeJobStore:
    def __init__(self, jobs: Optional[list[ScheduledJobRecord]] = None) -> None:
        self.jobs: list[ScheduledJobRecord] = list(jobs or [])
        self.runs: list[tuple[str, datetime]] = []
        self.fail_insert = False

    async def insert_scheduled_job(
        self,
        organization_id: str,
        interval_hours: int,
        job_type: str,
        config: dict[str, Any],
    ) -> str:
        if self.fail_insert:
            raise RuntimeError("db down")
        job = ScheduledJobRecord(
            id=str(uuid.uuid4()),
            organization_id=organization_id,
            job_type=job_type,
            interval_hours=interval_hours,
            config=config,
        )
        self.jobs.append(job)
        return job.id

    async def list_due_jobs(self, now: datetime, job_type: str) -> list[ScheduledJobRecord]:
        return [
            job
            for job in self.jobs
            if job.job_type == job_type
            and job.status == "active"
            and (job.last_run_at is None or job.last_run_at + timedelta(hours=job.interval_hours) <= now)
        ]

    async def mark_job_run(self, job_id: str, run_at: datetime) -> None:
        self.runs.append((job_id, run_at))
        for job in self.jobs:
            if job.id == job_id:
                job.last_run_at = run_at


class FakeTextService:
    """GenerativeTextService double returning a canned reply."""

    def __init__(self, reply: str = "Summary of related memories.") -> None:
        self.reply = reply
        self.prompts: list[str] = []
        self.error: Optional[Exception] = None
        self.delay: float = 0.0

    @property
    def call_count(self) -> int:
        return len(self.prompts)

    async def complete(self, prompt: str, max_output_chars: int) -> str:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.reply


def make_memory(
    content: str,
    memory_type: Optional[MemoryType],
    embedding: Optional[list[float]],
    organization_id: str = ORG_A,
    user_id: Optional[str] = None,
) -> MemoryRecord:
    return MemoryRecord(
        organization_id=organization_id,
        user_id=user_id,
        content=content,
        memory_type=memory_type,
        content_embedding=embedding,
    )


def enabled_plan(**memory_summarization: Any) -> PlanRecord:
    features: dict[str, Any] = {"enable_memory_summarization": True}
    if memory_summarization:
        features["memory_summarization"] = memory_summarization
    return PlanRecord(id=PLAN_ID, name="Pro", tier="pro", features=features)


