"""
Persistence of summary memories and their lineage.

The summary row is all-or-nothing: if it cannot be inserted nothing else is
written. Lineage edges and the ``summary_id`` back-reference on sources are
best-effort and are not rolled back or retried; a summary can therefore exist
with missing lineage.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Optional

from services.memory_types import (
    MemoryRecord,
    MemoryRelationshipRecord,
    MemoryStore,
    SUMMARY_MEMORY_TYPE,
)

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY_IMPORTANCE = 0.8


class MemoryLineageStore:
    """Writes summary memories plus one ``derived_from`` edge per source."""

    def __init__(self, memory_store: MemoryStore) -> None:
        self._memories = memory_store

    async def store_summary_as_memory(
        self,
        summary: MemoryRecord,
        source_memories: list[MemoryRecord],
        organization_id: str,
        user_id: Optional[str] = None,
    ) -> Optional[MemoryRecord]:
        """
        Insert ``summary`` and link it to ``source_memories``.

        Returns the stored summary (with its persisted id), or None if the
        summary insert failed. Sources from any other organization are
        never linked.
        """
        sources: list[MemoryRecord] = []
        for memory in source_memories:
            if memory.organization_id != organization_id:
                logger.warning(
                    "[MemoryLineage] Refusing to link memory %s from org %s to a summary in org %s",
                    memory.id,
                    memory.organization_id,
                    organization_id,
                )
                continue
            sources.append(memory)

        source_ids = [m.id for m in sources]
        summary_to_store = replace(
            summary,
            organization_id=organization_id,
            user_id=user_id,
            memory_type=summary.memory_type or SUMMARY_MEMORY_TYPE,
            importance_score=(
                summary.importance_score
                if summary.importance_score is not None
                else DEFAULT_SUMMARY_IMPORTANCE
            ),
            metadata={
                **summary.metadata,
                "is_summary": True,
                "summarized_count": len(sources),
                "original_memory_ids": source_ids,
            },
        )

        try:
            summary_id = await self._memories.insert_memory(summary_to_store)
        except Exception as e:
            logger.error(
                "[MemoryLineage] Error storing summary memory for org %s: %s",
                organization_id,
                e,
            )
            return None
        if not summary_id:
            logger.error("[MemoryLineage] Summary insert for org %s returned no id", organization_id)
            return None

        stored = replace(summary_to_store, id=str(summary_id))

        if sources:
            relationships = [
                MemoryRelationshipRecord(
                    organization_id=organization_id,
                    from_id=stored.id,
                    to_id=memory.id,
                )
                for memory in sources
            ]
            try:
                await self._memories.insert_relationships(relationships)
            except Exception as e:
                # Summary stands without lineage
                logger.error(
                    "[MemoryLineage] Error creating %d relationships for summary %s: %s",
                    len(relationships),
                    stored.id,
                    e,
                )

            try:
                await self._memories.mark_summarized(source_ids, stored.id, organization_id)
            except Exception as e:
                logger.error(
                    "[MemoryLineage] Error marking sources of summary %s as summarized: %s",
                    stored.id,
                    e,
                )

        logger.info(
            "[MemoryLineage] Stored summary %s for org %s from %d memories",
            stored.id,
            organization_id,
            len(sources),
        )
        return stored
