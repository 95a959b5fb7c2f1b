import asyncio
from datetime import datetime, timedelta

import pytest

from fakes import ORG_A, ORG_B, FakeJobStore
from services import memory_summarization
from services.memory_summarization import BatchSummarizationResult
from services.memory_types import MEMORY_SUMMARIZATION_JOB_TYPE, ScheduledJobRecord
from workers.tasks import summarization


def _job(job_id: str, organization_id: str, last_run_at=None, **config) -> ScheduledJobRecord:
    return ScheduledJobRecord(
        id=job_id,
        organization_id=organization_id,
        job_type=MEMORY_SUMMARIZATION_JOB_TYPE,
        interval_hours=24,
        config={"organization_id": organization_id, **config},
        last_run_at=last_run_at,
    )


def test_dispatcher_enqueues_only_due_jobs(monkeypatch) -> None:
    now = datetime(2026, 5, 1, 8, 0)
    store = FakeJobStore([
        _job("never-run", ORG_A, user_id="user-1"),
        _job("fresh", ORG_B, last_run_at=now - timedelta(hours=2)),
        _job("stale", ORG_B, last_run_at=now - timedelta(hours=30)),
    ])
    enqueued: list[tuple] = []
    monkeypatch.setattr(
        summarization.summarize_organization_memories,
        "delay",
        lambda *args: enqueued.append(args),
    )

    result = asyncio.run(summarization._check_scheduled_summarizations(store, now))

    assert result["jobs_triggered"] == ["never-run", "stale"]
    assert result["checked_at"] == now.isoformat()
    assert enqueued == [(ORG_A, "user-1"), (ORG_B, None)]
    assert store.runs == [("never-run", now), ("stale", now)]


def test_dispatch_failure_leaves_job_unstamped(monkeypatch) -> None:
    now = datetime(2026, 5, 1, 8, 0)
    store = FakeJobStore([_job("j1", ORG_A)])

    def _broken_delay(*_args):
        raise ConnectionError("broker unavailable")

    monkeypatch.setattr(summarization.summarize_organization_memories, "delay", _broken_delay)

    result = asyncio.run(summarization._check_scheduled_summarizations(store, now))

    assert result["jobs_triggered"] == []
    assert store.runs == []


def test_summarize_organization_runs_under_lock(monkeypatch) -> None:
    events: list[str] = []

    async def _fake_acquire(organization_id: str):
        events.append(f"acquire:{organization_id}")
        return "token-1"

    async def _fake_release(organization_id: str, token: str) -> None:
        events.append(f"release:{organization_id}:{token}")

    class _FakeService:
        async def summarize_all_memories(self, organization_id, user_id=None):
            events.append(f"run:{organization_id}:{user_id}")
            return BatchSummarizationResult(total_memories=4, total_summaries=1, summary_ids=["s1"])

    monkeypatch.setattr(summarization, "acquire_summarization_lock", _fake_acquire)
    monkeypatch.setattr(summarization, "release_summarization_lock", _fake_release)
    monkeypatch.setattr(memory_summarization, "build_memory_summarization_service", _FakeService)

    result = asyncio.run(summarization._summarize_organization(ORG_A, "user-1"))

    assert events == [f"acquire:{ORG_A}", f"run:{ORG_A}:user-1", f"release:{ORG_A}:token-1"]
    assert result["status"] == "completed"
    assert result["organization_id"] == ORG_A
    assert result["summary_ids"] == ["s1"]
    assert result["total_summaries"] == 1


def test_summarize_organization_skips_when_lock_held(monkeypatch) -> None:
    async def _held(_organization_id: str):
        return None

    def _unexpected_build():
        raise AssertionError("service should not be built")

    monkeypatch.setattr(summarization, "acquire_summarization_lock", _held)
    monkeypatch.setattr(memory_summarization, "build_memory_summarization_service", _unexpected_build)

    result = asyncio.run(summarization._summarize_organization(ORG_A))

    assert result == {"status": "skipped", "organization_id": ORG_A, "reason": "already_running"}


def test_lock_is_released_when_the_run_raises(monkeypatch) -> None:
    released: list[str] = []

    async def _fake_acquire(_organization_id: str):
        return "token-2"

    async def _fake_release(_organization_id: str, token: str) -> None:
        released.append(token)

    def _broken_build():
        raise RuntimeError("ANTHROPIC_API_KEY missing")

    monkeypatch.setattr(summarization, "acquire_summarization_lock", _fake_acquire)
    monkeypatch.setattr(summarization, "release_summarization_lock", _fake_release)
    monkeypatch.setattr(memory_summarization, "build_memory_summarization_service", _broken_build)

    with pytest.raises(RuntimeError):
        asyncio.run(summarization._summarize_organization(ORG_A))

    assert released == ["token-2"]


def test_redis_lock_uses_set_nx_with_ttl(monkeypatch) -> None:
    calls: list[tuple] = []

    class _FakeRedis:
        def __init__(self, was_set: bool) -> None:
            self._was_set = was_set

        async def set(self, key, value, nx=False, ex=None):
            calls.append((key, nx, ex))
            return self._was_set

        async def aclose(self) -> None:
            pass

    monkeypatch.setattr(summarization, "get_redis_client", lambda: _FakeRedis(True))
    token = asyncio.run(summarization.acquire_summarization_lock(ORG_A))

    assert token
    assert calls == [(
        f"memory_summarization:lock:{ORG_A}",
        True,
        summarization.settings.SUMMARIZATION_LOCK_TTL_SECONDS,
    )]

    monkeypatch.setattr(summarization, "get_redis_client", lambda: _FakeRedis(False))
    assert asyncio.run(summarization.acquire_summarization_lock(ORG_A)) is None


def test_redis_outage_does_not_block_the_run(monkeypatch) -> None:
    class _DownRedis:
        async def set(self, *args, **kwargs):
            raise ConnectionError("redis down")

        async def aclose(self) -> None:
            pass

    monkeypatch.setattr(summarization, "get_redis_client", lambda: _DownRedis())

    assert asyncio.run(summarization.acquire_summarization_lock(ORG_A))
