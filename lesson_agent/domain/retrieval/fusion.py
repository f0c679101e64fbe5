from __future__ import annotations

import math
from dataclasses import replace
from typing import Optional, Sequence

from lesson_agent.domain.retrieval.models import RetrievalConfig, SearchResult


def cosine_similarity(vec_a: Optional[Sequence[float]], vec_b: Optional[Sequence[float]]) -> float:
    if not vec_a or not vec_b or len(vec_a) != len(vec_b):
        return 0.0
    dot = sum(a * b for a, b in zip(vec_a, vec_b))
    norm_a = math.sqrt(sum(a * a for a in vec_a))
    norm_b = math.sqrt(sum(b * b for b in vec_b))
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (norm_a * norm_b)


def min_max_normalize(results: Sequence[SearchResult]) -> list[SearchResult]:
    """Rescale scores into [0, 1]. A flat list (max == min) maps every entry to 1.0."""
    if not results:
        return []
    scores = [result.score for result in results]
    max_score, min_score = max(scores), min(scores)
    spread = max_score - min_score
    if spread == 0:
        return [replace(result, score=1.0) for result in results]
    return [replace(result, score=(result.score - min_score) / spread) for result in results]


def fuse_results(
    vector_results: Sequence[SearchResult],
    graph_results: Sequence[SearchResult],
    config: RetrievalConfig,
) -> list[SearchResult]:
    """Weighted sum of the two normalized paths, keyed by node id, best first."""
    fused: dict[str, SearchResult] = {}

    for result in min_max_normalize(vector_results):
        fused[result.node_id] = replace(
            result,
            vector_score=result.score,
            graph_score=0.0,
            score=result.score * config.vector_weight,
        )

    for result in min_max_normalize(graph_results):
        existing = fused.get(result.node_id)
        if existing is not None:
            existing.graph_score = result.score
            existing.score = (existing.vector_score or 0.0) * config.vector_weight + (
                result.score * config.graph_weight
            )
        else:
            fused[result.node_id] = replace(
                result,
                vector_score=0.0,
                graph_score=result.score,
                score=result.score * config.graph_weight,
            )

    return sorted(fused.values(), key=lambda item: item.score, reverse=True)
