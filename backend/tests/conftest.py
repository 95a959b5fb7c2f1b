"""Fixtures for the memory summarization tests."""
from __future__ import annotations

import pytest

from fakes import (
    ORG_A,
    PLAN_ID,
    FakeJobStore,
    FakeMemoryStore,
    FakeSubscriptionStore,
    FakeTextService,
    enabled_plan,
    make_memory,
)
from services.memory_types import MemoryRecord, MemoryType, SubscriptionRecord


@pytest.fixture
def sample_memories() -> list[MemoryRecord]:
    """Six memories: three type pairs, similar within a pair, orthogonal across pairs."""
    return [
        make_memory("Customer prefers email follow-ups", MemoryType.PREFERENCE, [1.0, 0.1, 0, 0, 0, 0, 0, 0]),
        make_memory("Customer likes email over calls", MemoryType.PREFERENCE, [0.9, 0.2, 0, 0, 0, 0, 0, 0]),
        make_memory("Pricing page felt confusing", MemoryType.FEEDBACK, [0, 0, 1.0, 0.1, 0, 0, 0, 0]),
        make_memory("Users found pricing unclear", MemoryType.FEEDBACK, [0, 0, 0.9, 0.2, 0, 0, 0, 0]),
        make_memory("Demo went well with Globex", MemoryType.INTERACTION, [0, 0, 0, 0, 1.0, 0.1, 0, 0]),
        make_memory("Globex demo got positive reaction", MemoryType.INTERACTION, [0, 0, 0, 0, 0.9, 0.2, 0, 0]),
    ]


@pytest.fixture
def memory_store(sample_memories: list[MemoryRecord]) -> FakeMemoryStore:
    return FakeMemoryStore(sample_memories)


@pytest.fixture
def subscription_store() -> FakeSubscriptionStore:
    return FakeSubscriptionStore(
        subscriptions={
            ORG_A: SubscriptionRecord(organization_id=ORG_A, subscription_plan_id=PLAN_ID, status="active"),
        },
        plans={PLAN_ID: enabled_plan(min_memories_for_summary=2)},
    )


@pytest.fixture
def text_service() -> FakeTextService:
    return FakeTextService()


@pytest.fixture
def job_store() -> FakeJobStore:
    return FakeJobStore()
