"""Registration of recurring memory summarization jobs."""
from __future__ import annotations

import logging
from typing import Any, Optional

from services.memory_types import JobStore, MEMORY_SUMMARIZATION_JOB_TYPE

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_HOURS = 24


class SummarizationScheduler:
    """
    Persists the intent to summarize an organization's memories on an interval.

    Nothing here runs jobs; workers.tasks.summarization picks up due rows.
    """

    def __init__(self, job_store: JobStore) -> None:
        self._jobs = job_store

    async def schedule_regular_summarization(
        self,
        organization_id: str,
        interval_hours: int = DEFAULT_INTERVAL_HOURS,
        user_id: Optional[str] = None,
    ) -> Optional[str]:
        """
        Insert a scheduled job row and return its id.

        Returns None (never raises) when the row could not be persisted or
        the interval is not positive.
        """
        try:
            valid_interval = interval_hours > 0
        except TypeError:
            valid_interval = False
        if not valid_interval:
            logger.warning(
                "[SummarizationScheduler] Rejecting invalid interval %r for org %s",
                interval_hours,
                organization_id,
            )
            return None

        config: dict[str, Any] = {"organization_id": organization_id}
        if user_id:
            config["user_id"] = user_id

        try:
            job_id = await self._jobs.insert_scheduled_job(
                organization_id=organization_id,
                interval_hours=interval_hours,
                job_type=MEMORY_SUMMARIZATION_JOB_TYPE,
                config=config,
            )
        except Exception as e:
            logger.error(
                "[SummarizationScheduler] Failed to schedule summarization for org %s: %s",
                organization_id,
                e,
            )
            return None

        if not job_id:
            return None

        logger.info(
            "[SummarizationScheduler] Scheduled summarization job %s for org %s every %dh",
            job_id,
            organization_id,
            interval_hours,
        )
        return str(job_id)
