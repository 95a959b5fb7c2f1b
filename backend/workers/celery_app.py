"""
Celery application configuration.

This configures Celery with Redis as the broker and result backend.
Beat schedule is defined here for periodic tasks.
"""
from __future__ import annotations

import os
import sys
from datetime import timedelta
from pathlib import Path

# Ensure backend directory is in Python path for Celery workers
backend_dir = Path(__file__).resolve().parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

# Load .env BEFORE importing config/settings so workers see the same DATABASE_URL
from dotenv import load_dotenv
env_file = backend_dir / ".env"
if not env_file.exists():
    env_file = backend_dir.parent / ".env"
if env_file.exists():
    load_dotenv(env_file)

import logging

from celery import Celery
from celery.signals import worker_process_shutdown
from kombu import Exchange, Queue

from config import log_missing_env_vars, settings

logger = logging.getLogger(__name__)

REDIS_URL: str = os.environ.get("REDIS_URL", settings.REDIS_URL)

celery_app = Celery(
    "memory_summarization",
    broker=REDIS_URL,
    backend=REDIS_URL,
    include=[
        "workers.tasks.summarization",
    ],
)

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task settings
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minutes max per task
    task_soft_time_limit=25 * 60,

    result_expires=60 * 60 * 24,

    # Each worker process creates its own connection pool
    worker_prefetch_multiplier=1,
    worker_concurrency=2,

    task_queues=(
        Queue("default", Exchange("default"), routing_key="default"),
        Queue("summarization", Exchange("summarization"), routing_key="summarization.#"),
    ),
    task_default_queue="default",
    task_default_exchange="default",
    task_default_routing_key="default",

    task_routes={
        "workers.tasks.summarization.*": {"queue": "summarization"},
    },
)

celery_app.conf.beat_schedule = {
    # Enqueue summarization runs for scheduled_jobs rows whose interval has elapsed
    "check-scheduled-summarizations": {
        "task": "workers.tasks.summarization.check_scheduled_summarizations",
        "schedule": timedelta(minutes=settings.SUMMARIZATION_DISPATCH_INTERVAL_MINUTES),
        "options": {"queue": "summarization"},
    },
}

log_missing_env_vars(logger)


@worker_process_shutdown.connect
def cleanup_db_connections(**kwargs) -> None:
    """Release database connections when a Celery worker process shuts down."""
    try:
        from models.database import dispose_engine
        dispose_engine()
        logger.info("[Celery] Database connections cleaned up on worker shutdown")
    except Exception as e:
        logger.error("[Celery] Error cleaning up database connections: %s", e)
