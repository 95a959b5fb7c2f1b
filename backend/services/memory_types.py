"""
Value types and collaborator interfaces for memory summarization.

The summarization pipeline works on plain dataclasses rather than ORM rows so
that clustering and orchestration can run against any store implementation.
SQLAlchemy-backed stores live in services.summarization_stores; tests use
in-memory doubles that satisfy the same Protocols.
"""
from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, Protocol


class MemoryType(str, enum.Enum):
    """Closed set of memory tags. INSIGHT marks derived (summary) records."""

    DECISION = "decision"
    OBSERVATION = "observation"
    FEEDBACK = "feedback"
    INTERACTION = "interaction"
    TACTIC = "tactic"
    PREFERENCE = "preference"
    INSIGHT = "insight"


SUMMARY_MEMORY_TYPE: MemoryType = MemoryType.INSIGHT
DERIVED_FROM_RELATIONSHIP: str = "derived_from"
MEMORY_SUMMARIZATION_JOB_TYPE: str = "memory_summarization"


@dataclass
class MemoryRecord:
    """A single tenant-scoped memory as seen by the summarization pipeline."""

    organization_id: str
    content: str
    memory_type: Optional[MemoryType] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    user_id: Optional[str] = None
    content_embedding: Optional[list[float]] = None
    importance_score: Optional[float] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    summary_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_summary(self) -> bool:
        return bool(self.metadata.get("is_summary"))

    @property
    def has_embedding(self) -> bool:
        return bool(self.content_embedding)


@dataclass
class MemoryRelationshipRecord:
    """Directed lineage edge: ``from_id`` (summary) was derived from ``to_id``."""

    organization_id: str
    from_id: str
    to_id: str
    relationship_type: str = DERIVED_FROM_RELATIONSHIP
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class SubscriptionRecord:
    organization_id: str
    subscription_plan_id: str
    status: str


@dataclass
class PlanRecord:
    id: str
    features: Optional[dict[str, Any]]
    name: Optional[str] = None
    tier: Optional[str] = None


@dataclass
class ScheduledJobRecord:
    id: str
    organization_id: str
    job_type: str
    interval_hours: int
    status: str = "active"
    config: dict[str, Any] = field(default_factory=dict)
    last_run_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class MemoryStore(Protocol):
    """Reads and writes the ``memories`` and ``memory_relationships`` tables."""

    async def fetch_eligible_memories(
        self, organization_id: str, user_id: Optional[str] = None
    ) -> list[MemoryRecord]: ...

    async def insert_memory(self, memory: MemoryRecord) -> str:
        """Persist the memory and return its id. Raises on failure."""
        ...

    async def insert_relationships(
        self, relationships: list[MemoryRelationshipRecord]
    ) -> None: ...

    async def mark_summarized(
        self, memory_ids: list[str], summary_id: str, organization_id: str
    ) -> None: ...


class SubscriptionStore(Protocol):
    async def get_subscription_for_organization(
        self, organization_id: str
    ) -> Optional[SubscriptionRecord]: ...

    async def get_plan(self, plan_id: str) -> Optional[PlanRecord]: ...


class JobStore(Protocol):
    async def insert_scheduled_job(
        self,
        organization_id: str,
        interval_hours: int,
        job_type: str,
        config: dict[str, Any],
    ) -> str: ...

    async def list_due_jobs(
        self, now: datetime, job_type: str
    ) -> list[ScheduledJobRecord]: ...

    async def mark_job_run(self, job_id: str, run_at: datetime) -> None: ...


class GenerativeTextService(Protocol):
    async def complete(self, prompt: str, max_output_chars: int) -> str: ...
