"""
Memory summarization orchestrator.

Sequences one run for a single organization (optionally a single user):
config -> eligible memories -> type partitions -> similarity clusters ->
summary per cluster -> summary memory + lineage.

Failures are isolated per cluster; the public methods never raise. Each run
reads and writes only the requested organization's data.
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Optional

from services.memory_clustering import (
    calculate_centroid,
    cluster_memories_by_similarity,
    cluster_memories_by_type,
)
from services.memory_lineage import DEFAULT_SUMMARY_IMPORTANCE, MemoryLineageStore
from services.memory_summarizer import AnthropicTextService, MemorySummarizer
from services.memory_types import (
    MemoryRecord,
    MemoryStore,
    MemoryType,
    SUMMARY_MEMORY_TYPE,
)
from services.summarization_config import SummarizationConfig, SummarizationConfigResolver
from services.summarization_scheduler import SummarizationScheduler

logger = logging.getLogger(__name__)

SUMMARY_SOURCE = "memory_summarization"


class OrganizationLockManager:
    """In-process async lock manager keyed by organization id."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_refs: dict[str, int] = {}
        self._manager_lock = asyncio.Lock()

    @asynccontextmanager
    async def organization_lock(self, organization_id: str) -> AsyncIterator[None]:
        """Serialize runs for one organization, cleaning up idle keys."""
        async with self._manager_lock:
            lock = self._locks.get(organization_id)
            if lock is None:
                lock = asyncio.Lock()
                self._locks[organization_id] = lock
                self._lock_refs[organization_id] = 0
            self._lock_refs[organization_id] = self._lock_refs.get(organization_id, 0) + 1
            queued_count = self._lock_refs[organization_id]

        if queued_count > 1:
            logger.info(
                "[MemorySummarization] Waiting for summarization lock org=%s queued=%d",
                organization_id,
                queued_count,
            )
        await lock.acquire()

        try:
            yield
        finally:
            lock.release()
            async with self._manager_lock:
                remaining = max(self._lock_refs.get(organization_id, 1) - 1, 0)
                if remaining == 0:
                    self._lock_refs.pop(organization_id, None)
                    self._locks.pop(organization_id, None)
                else:
                    self._lock_refs[organization_id] = remaining


@dataclass
class MemoryGroup:
    memories: list[MemoryRecord]
    memory_type: Optional[MemoryType] = None
    centroid: Optional[list[float]] = None


@dataclass
class SummarizationResult:
    success: bool
    summary_id: Optional[str] = None
    summary_content: Optional[str] = None
    original_memory_ids: list[str] = field(default_factory=list)
    error: Optional[str] = None
    compression_ratio: float = 0.0


@dataclass
class BatchSummarizationResult:
    total_memories: int = 0
    total_summaries: int = 0
    summary_ids: list[str] = field(default_factory=list)
    summaries: list[SummarizationResult] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    processing_time_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        """JSON-serializable view (Celery task results)."""
        return {
            "total_memories": self.total_memories,
            "total_summaries": self.total_summaries,
            "summary_ids": list(self.summary_ids),
            "errors": list(self.errors),
            "processing_time_ms": self.processing_time_ms,
        }


def _dominant_type(memories: list[MemoryRecord]) -> MemoryType:
    counts = Counter(m.memory_type for m in memories if m.memory_type is not None)
    if not counts:
        return MemoryType.OBSERVATION
    return counts.most_common(1)[0][0]


class MemorySummarizationService:
    """Summarizes and consolidates an organization's memories."""

    def __init__(
        self,
        memory_store: MemoryStore,
        config_resolver: SummarizationConfigResolver,
        summarizer: MemorySummarizer,
        lineage_store: Optional[MemoryLineageStore] = None,
        lock_manager: Optional[OrganizationLockManager] = None,
    ) -> None:
        self._memories = memory_store
        self._config = config_resolver
        self._summarizer = summarizer
        self._lineage = lineage_store or MemoryLineageStore(memory_store)
        self._locks = lock_manager or OrganizationLockManager()

    async def get_config_for_organization(self, organization_id: str) -> SummarizationConfig:
        return await self._config.get_config_for_organization(organization_id)

    async def store_summary_as_memory(
        self,
        summary: MemoryRecord,
        source_memories: list[MemoryRecord],
        organization_id: str,
        user_id: Optional[str] = None,
    ) -> Optional[MemoryRecord]:
        return await self._lineage.store_summary_as_memory(
            summary, source_memories, organization_id, user_id
        )

    async def summarize_memory_group(
        self,
        group: MemoryGroup,
        config: SummarizationConfig,
        organization_id: str,
        user_id: Optional[str] = None,
    ) -> SummarizationResult:
        """Generate, store, and link one summary for ``group``."""
        if not group.memories:
            logger.error("[MemorySummarization] Cannot summarize empty memory group")
            return SummarizationResult(success=False, error="Empty memory group")

        memory_type = group.memory_type or _dominant_type(group.memories)
        contents = [m.content for m in group.memories]
        original_ids = [m.id for m in group.memories]

        try:
            summary_text = await self._summarizer.generate_summary(
                contents, memory_type, config.max_summary_length
            )
            if not summary_text:
                return SummarizationResult(
                    success=False,
                    error="Failed to generate summary",
                    original_memory_ids=original_ids,
                )

            summary = MemoryRecord(
                organization_id=organization_id,
                user_id=user_id,
                content=summary_text,
                memory_type=SUMMARY_MEMORY_TYPE,
                importance_score=DEFAULT_SUMMARY_IMPORTANCE,
                metadata={
                    "source": SUMMARY_SOURCE,
                    "is_summary": True,
                    "source_memory_type": memory_type.value,
                    "similarity_threshold": config.similarity_threshold,
                    "subscription_tier": config.subscription_tier,
                },
            )

            stored = await self._lineage.store_summary_as_memory(
                summary, group.memories, organization_id, user_id
            )
            if stored is None:
                return SummarizationResult(
                    success=False,
                    error="Failed to store summary",
                    summary_content=summary_text,
                    original_memory_ids=original_ids,
                )

            original_length = sum(len(c) for c in contents)
            return SummarizationResult(
                success=True,
                summary_id=stored.id,
                summary_content=summary_text,
                original_memory_ids=original_ids,
                compression_ratio=len(summary_text) / (original_length or 1),
            )
        except Exception as e:
            logger.error("[MemorySummarization] Error summarizing memory group: %s", e)
            return SummarizationResult(
                success=False,
                error="Error during summarization process",
                original_memory_ids=original_ids,
            )

    async def summarize_all_memories(
        self,
        organization_id: str,
        user_id: Optional[str] = None,
    ) -> BatchSummarizationResult:
        """
        Summarize every eligible memory cluster for the organization.

        Returns an empty result when the plan disables summarization.
        Runs for the same organization are serialized within this process.
        """
        start = time.monotonic()
        result = BatchSummarizationResult()

        async with self._locks.organization_lock(organization_id):
            try:
                await self._run(organization_id, user_id, result)
            except Exception as e:
                logger.error(
                    "[MemorySummarization] Run failed for org %s: %s",
                    organization_id,
                    e,
                )
                result.errors.append(str(e))

        result.total_summaries = len(result.summary_ids)
        result.processing_time_ms = int((time.monotonic() - start) * 1000)
        logger.info(
            "[MemorySummarization] org=%s memories=%d summaries=%d errors=%d in %dms",
            organization_id,
            result.total_memories,
            result.total_summaries,
            len(result.errors),
            result.processing_time_ms,
        )
        return result

    async def _run(
        self,
        organization_id: str,
        user_id: Optional[str],
        result: BatchSummarizationResult,
    ) -> None:
        config = await self._config.get_config_for_organization(organization_id)
        if not config.summarization_enabled:
            logger.info(
                "[MemorySummarization] Summarization disabled for org %s (tier=%s)",
                organization_id,
                config.subscription_tier,
            )
            return

        memories = await self._memories.fetch_eligible_memories(organization_id, user_id)
        foreign = [m for m in memories if m.organization_id != organization_id]
        if foreign:
            logger.error(
                "[MemorySummarization] Store returned %d memories outside org %s; discarding them",
                len(foreign),
                organization_id,
            )
            memories = [m for m in memories if m.organization_id == organization_id]

        result.total_memories = len(memories)
        if len(memories) < config.min_memories_for_summary:
            return

        for memory_type, typed_memories in cluster_memories_by_type(memories).items():
            if len(typed_memories) < config.min_memories_for_summary:
                continue

            try:
                clusters = cluster_memories_by_similarity(typed_memories, config.similarity_threshold)
            except ValueError as e:
                logger.error(
                    "[MemorySummarization] Could not cluster %s memories for org %s: %s",
                    memory_type.value,
                    organization_id,
                    e,
                )
                result.errors.append(f"{memory_type.value}: {e}")
                continue

            for cluster in clusters:
                if len(cluster) < config.min_memories_for_summary:
                    continue

                # Keep the first N members; input is newest first
                group = MemoryGroup(
                    memories=cluster[: config.max_memories_per_summary],
                    memory_type=memory_type,
                )
                summary = await self.summarize_memory_group(group, config, organization_id, user_id)

                if summary.success and summary.summary_id:
                    result.summaries.append(summary)
                    result.summary_ids.append(summary.summary_id)
                elif summary.error:
                    result.errors.append(f"{memory_type.value}: {summary.error}")

    async def group_similar_memories(
        self,
        memories: list[MemoryRecord],
        config: SummarizationConfig,
    ) -> list[MemoryGroup]:
        """
        Preview the groups a run would consider, without summarizing or writing.

        Only clusters with more than one member are returned, each with its
        type and embedding centroid.
        """
        groups: list[MemoryGroup] = []
        for memory_type, typed_memories in cluster_memories_by_type(memories).items():
            for cluster in cluster_memories_by_similarity(typed_memories, config.similarity_threshold):
                if len(cluster) <= 1:
                    continue
                embeddings = [m.content_embedding for m in cluster if m.content_embedding]
                groups.append(
                    MemoryGroup(
                        memories=cluster,
                        memory_type=memory_type,
                        centroid=calculate_centroid(embeddings) if embeddings else None,
                    )
                )
        return groups

    async def legacy_summarize(
        self,
        organization_id: str,
        user_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """Compact result shape kept for older callers."""
        result = await self.summarize_all_memories(organization_id, user_id)
        return {
            "summary_ids": result.summary_ids,
            "processing_time_ms": result.processing_time_ms,
            "memories_processed": result.total_memories,
            "summaries_created": result.total_summaries,
        }


def build_memory_summarization_service() -> MemorySummarizationService:
    """Wire the production stores and text service."""
    from services.summarization_stores import SqlMemoryStore, SqlSubscriptionStore

    memory_store = SqlMemoryStore()
    return MemorySummarizationService(
        memory_store=memory_store,
        config_resolver=SummarizationConfigResolver(SqlSubscriptionStore()),
        summarizer=MemorySummarizer(AnthropicTextService()),
        lineage_store=MemoryLineageStore(memory_store),
    )


def build_summarization_scheduler() -> SummarizationScheduler:
    from services.summarization_stores import SqlJobStore

    return SummarizationScheduler(SqlJobStore())
