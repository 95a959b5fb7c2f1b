"""
Memory summarization tasks for Celery workers.

These tasks handle:
- Checking scheduled_jobs for organizations whose summarization interval elapsed
- Running one organization's summarization under a cross-process Redis lock
"""
from __future__ import annotations

import sys
from pathlib import Path

# Ensure backend directory is in Python path for Celery forked workers
_backend_dir = Path(__file__).resolve().parent.parent.parent
if str(_backend_dir) not in sys.path:
    sys.path.insert(0, str(_backend_dir))

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Optional

import redis.asyncio as redis

from config import get_redis_connection_kwargs, settings
from services.memory_types import JobStore, MEMORY_SUMMARIZATION_JOB_TYPE
from workers.celery_app import celery_app

logger = logging.getLogger(__name__)

LOCK_KEY_TEMPLATE = "memory_summarization:lock:{organization_id}"

# Delete the lock only if we still own it
_RELEASE_LOCK_SCRIPT: str = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


def run_async(coro: Any) -> Any:
    """Run an async function in a sync context (for Celery tasks).

    Creates a fresh event loop and disposes any existing database connections
    to avoid 'Future attached to different loop' errors with asyncpg.
    """
    from models.database import dispose_engine

    dispose_engine()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def get_redis_client() -> redis.Redis:
    return redis.from_url(settings.REDIS_URL, **get_redis_connection_kwargs())


async def acquire_summarization_lock(organization_id: str) -> Optional[str]:
    """
    Claim the per-organization run lock.

    Returns an ownership token, or None when another worker holds the lock.
    If Redis is unreachable the run proceeds unlocked.
    """
    token = str(uuid.uuid4())
    key = LOCK_KEY_TEMPLATE.format(organization_id=organization_id)
    client = get_redis_client()
    try:
        was_set = await client.set(
            key, token, nx=True, ex=settings.SUMMARIZATION_LOCK_TTL_SECONDS
        )
        return token if was_set else None
    except Exception as e:
        logger.error("[summarization] Redis error acquiring lock for org %s: %s", organization_id, e)
        return token
    finally:
        await client.aclose()


async def release_summarization_lock(organization_id: str, token: str) -> None:
    key = LOCK_KEY_TEMPLATE.format(organization_id=organization_id)
    client = get_redis_client()
    try:
        await client.eval(_RELEASE_LOCK_SCRIPT, 1, key, token)
    except Exception as e:
        logger.error("[summarization] Redis error releasing lock for org %s: %s", organization_id, e)
    finally:
        await client.aclose()


async def _summarize_organization(
    organization_id: str,
    user_id: Optional[str] = None,
) -> dict[str, Any]:
    """Run summarization for one organization if no other worker is already doing so."""
    from services.memory_summarization import build_memory_summarization_service

    token = await acquire_summarization_lock(organization_id)
    if token is None:
        logger.info("[summarization] Run already in progress for org %s, skipping", organization_id)
        return {
            "status": "skipped",
            "organization_id": organization_id,
            "reason": "already_running",
        }

    try:
        service = build_memory_summarization_service()
        result = await service.summarize_all_memories(organization_id, user_id)
        return {
            "status": "completed",
            "organization_id": organization_id,
            **result.to_dict(),
        }
    finally:
        await release_summarization_lock(organization_id, token)


async def _check_scheduled_summarizations(
    job_store: Optional[JobStore] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Enqueue a summarization run for every due memory_summarization job.

    A job is stamped with ``last_run_at`` when it is enqueued, not when the
    run finishes.
    """
    if job_store is None:
        from services.summarization_stores import SqlJobStore
        job_store = SqlJobStore()

    now = now or datetime.utcnow()
    triggered: list[str] = []

    jobs = await job_store.list_due_jobs(now, MEMORY_SUMMARIZATION_JOB_TYPE)
    for job in jobs:
        try:
            summarize_organization_memories.delay(job.organization_id, job.config.get("user_id"))
            await job_store.mark_job_run(job.id, now)
            triggered.append(job.id)
        except Exception as e:
            logger.error("[summarization] Error dispatching job %s: %s", job.id, e)

    if triggered:
        logger.info("[summarization] Dispatched %d summarization jobs", len(triggered))

    return {
        "checked_at": now.isoformat(),
        "jobs_triggered": triggered,
    }


@celery_app.task(bind=True, name="workers.tasks.summarization.check_scheduled_summarizations")
def check_scheduled_summarizations(self: Any) -> dict[str, Any]:
    """
    Celery task to dispatch due summarization jobs.

    Runs on the Beat interval configured in workers.celery_app.
    """
    return run_async(_check_scheduled_summarizations())


@celery_app.task(bind=True, name="workers.tasks.summarization.summarize_organization_memories")
def summarize_organization_memories(
    self: Any,
    organization_id: str,
    user_id: Optional[str] = None,
) -> dict[str, Any]:
    """
    Celery task to summarize one organization's memories.

    Args:
        organization_id: UUID of the organization
        user_id: Optional user scope within the organization
    """
    return run_async(_summarize_organization(organization_id, user_id))
