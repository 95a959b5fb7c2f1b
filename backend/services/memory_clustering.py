"""
Memory clustering for summarization.

Two phases:
1. cluster_memories_by_type - hard partition on memory_type
2. cluster_memories_by_similarity - greedy single-linkage grouping on
   embedding cosine similarity within one type partition

The similarity phase is order-sensitive: no centroid is recomputed, and a
memory joins the first cluster (in seed order) it chains to.
"""
from __future__ import annotations

import logging
import math
from typing import Sequence

from services.memory_types import MemoryRecord, MemoryType

logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.8


def cosine_similarity(vector_a: Sequence[float], vector_b: Sequence[float]) -> float:
    """
    Cosine similarity between two vectors, in [-1, 1].

    Returns 0.0 when either vector has zero magnitude.

    Raises:
        ValueError: if the vectors have different dimensions.
    """
    if len(vector_a) != len(vector_b):
        raise ValueError(
            f"Embedding length mismatch: {len(vector_a)} != {len(vector_b)}"
        )

    dot_product = sum(a * b for a, b in zip(vector_a, vector_b))
    norm_a = math.sqrt(sum(a * a for a in vector_a))
    norm_b = math.sqrt(sum(b * b for b in vector_b))

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return dot_product / (norm_a * norm_b)


def calculate_centroid(vectors: Sequence[Sequence[float]]) -> list[float]:
    """Mean vector of ``vectors``. Raises ValueError on empty or ragged input."""
    if not vectors:
        raise ValueError("Cannot calculate centroid of empty embeddings set")

    dimensions = len(vectors[0])
    centroid = [0.0] * dimensions
    for vector in vectors:
        if len(vector) != dimensions:
            raise ValueError("All embeddings must have the same dimensions")
        for i, value in enumerate(vector):
            centroid[i] += value

    return [value / len(vectors) for value in centroid]


def cluster_memories_by_type(
    memories: Sequence[MemoryRecord],
) -> dict[MemoryType, list[MemoryRecord]]:
    """
    Group memories by memory_type.

    Key order follows first appearance and each group keeps input order.
    Memories without a type are skipped.
    """
    clusters: dict[MemoryType, list[MemoryRecord]] = {}
    for memory in memories:
        if memory.memory_type is None:
            continue
        clusters.setdefault(memory.memory_type, []).append(memory)
    return clusters


def cluster_memories_by_similarity(
    memories: Sequence[MemoryRecord],
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> list[list[MemoryRecord]]:
    """
    Greedy single-linkage clustering on embedding cosine similarity.

    For each unassigned memory (in input order) a new cluster is seeded, then
    unassigned memories whose similarity to *any* current member is at least
    ``threshold`` are absorbed, repeating until the cluster stops growing.

    Memories without an embedding are left out entirely. Clusters are
    returned in seed order, members in join order.

    Raises:
        ValueError: if two embeddings in the partition differ in dimension.
    """
    candidates = [m for m in memories if m.has_embedding]
    skipped = len(memories) - len(candidates)
    if skipped:
        logger.debug("Skipping %d memories without embeddings", skipped)

    assigned: set[int] = set()
    clusters: list[list[MemoryRecord]] = []

    for seed_index, seed in enumerate(candidates):
        if seed_index in assigned:
            continue
        assigned.add(seed_index)
        cluster: list[MemoryRecord] = [seed]

        grew = True
        while grew:
            grew = False
            for index, other in enumerate(candidates):
                if index in assigned:
                    continue
                if any(
                    cosine_similarity(member.content_embedding, other.content_embedding) >= threshold
                    for member in cluster
                ):
                    cluster.append(other)
                    assigned.add(index)
                    grew = True

        clusters.append(cluster)

    return clusters
