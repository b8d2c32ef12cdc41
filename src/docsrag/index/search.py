"""Exhaustive cosine-similarity search over the live index snapshot."""

from __future__ import annotations

import heapq
import math
import time
from typing import List, Sequence

from docsrag.errors import SearchError
from docsrag.index.store import IndexStore
from docsrag.metrics.observability import PipelineMetrics
from docsrag.models import SearchHit


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """``dot(a, b) / (|a| * |b|)``; 0.0 when either vector has zero norm."""

    if len(a) != len(b):
        raise ValueError(f"Vector dimensions must match ({len(a)} != {len(b)})")
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    score = dot / math.sqrt(norm_a * norm_b)
    return max(-1.0, min(1.0, score))


class SimilaritySearch:
    """Linear scan ranking every stored vector against a query vector."""

    def __init__(self, store: IndexStore) -> None:
        self._store = store

    def search(
        self,
        query_vector: Sequence[float],
        top_k: int = 5,
        *,
        min_similarity: float | None = None,
    ) -> List[SearchHit]:
        """Return up to ``top_k`` hits, most similar first, ties in insertion order."""

        if not self._store.loaded:
            raise SearchError("Index is not loaded")
        if top_k <= 0:
            return []
        snapshot = self._store.snapshot
        if snapshot.dimension is not None and len(query_vector) != snapshot.dimension:
            raise SearchError(
                f"Query vector has dimension {len(query_vector)}, index expects {snapshot.dimension}",
            )
        start = time.perf_counter()
        hits: list[SearchHit] = []
        for chunk_id, chunk in snapshot.chunks.items():
            vector = snapshot.vectors.get(chunk_id)
            if vector is None:
                raise SearchError(f"Chunk {chunk_id} has no vector")
            similarity = cosine_similarity(query_vector, vector)
            if min_similarity is not None and similarity < min_similarity:
                continue
            hits.append(SearchHit(chunk=chunk, similarity=similarity))
        ranked = heapq.nlargest(top_k, hits, key=lambda hit: hit.similarity)
        PipelineMetrics.observe_search(time.perf_counter() - start, (hit.similarity for hit in ranked))
        return ranked
