"""
Hybrid knowledge retrieval: vector similarity and graph structure, fused.

Both paths run concurrently under one timeout budget and degrade
independently: an embedding outage falls back to keyword scoring, a graph
outage yields an empty graph path, and an enrichment failure keeps the hit
with whatever properties were already fetched.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Optional, Sequence

import structlog

from lesson_agent.core.observability.generation_metrics import (
    GenerationMetricsStore,
    generation_metrics_store,
)
from lesson_agent.domain.exceptions import DegradableRetrievalError
from lesson_agent.domain.interfaces.embedding_provider import IEmbeddingProvider
from lesson_agent.domain.interfaces.knowledge_graph import IKnowledgeGraph
from lesson_agent.domain.lesson.models import KnowledgeContext
from lesson_agent.domain.retrieval.fusion import cosine_similarity, fuse_results
from lesson_agent.domain.retrieval.keywords import extract_keywords, keyword_overlap_score
from lesson_agent.domain.retrieval.models import (
    KnowledgeNode,
    KnowledgeSubgraph,
    RetrievalConfig,
    SearchResult,
)
from lesson_agent.infrastructure.observability.logger_config import elapsed_ms, perf_now

logger = structlog.get_logger(__name__)

KNOWLEDGE_GRAPH_SOURCE = "knowledge_graph"


def merge_with_existing(
    existing: Sequence[KnowledgeContext], retrieved: Sequence[KnowledgeContext]
) -> list[KnowledgeContext]:
    """Caller-supplied contexts come first and win on id collisions."""
    merged = list(existing)
    seen = {context.id for context in existing}
    for context in retrieved:
        if context.id not in seen:
            seen.add(context.id)
            merged.append(context)
    return merged


def build_context_body(node: KnowledgeNode, prerequisites: Sequence[KnowledgeNode]) -> str:
    body = f"{node.name}\n\n{node.description}\n\n{node.content}"
    if node.examples:
        body += "\n\n示例：\n" + "\n".join(node.examples)
    if prerequisites:
        body += "\n\n前置知识：\n" + "\n".join(
            f"- {item.name}: {item.description}" for item in prerequisites
        )
    return body


class HybridRetrievalEngine:
    def __init__(
        self,
        graph: IKnowledgeGraph,
        embedder: Optional[IEmbeddingProvider],
        config: Optional[RetrievalConfig] = None,
        *,
        timeout_seconds: float = 20.0,
        embedding_concurrency: int = 4,
        metrics: GenerationMetricsStore = generation_metrics_store,
    ):
        self._graph = graph
        self._embedder = embedder
        self._config = config or RetrievalConfig()
        self._timeout_seconds = float(timeout_seconds)
        self._embedding_concurrency = max(1, int(embedding_concurrency))
        self._metrics = metrics

    def get_config(self) -> RetrievalConfig:
        return self._config

    def with_config(self, **overrides: Any) -> "HybridRetrievalEngine":
        """New engine sharing the same clients; this one is left untouched."""
        return HybridRetrievalEngine(
            self._graph,
            self._embedder,
            self._config.with_overrides(**overrides),
            timeout_seconds=self._timeout_seconds,
            embedding_concurrency=self._embedding_concurrency,
            metrics=self._metrics,
        )

    async def hybrid_search(
        self,
        query: str,
        subject: str,
        grade: str,
        *,
        max_results: Optional[int] = None,
        search_depth: Optional[int] = None,
        scope_id: Optional[str] = None,
        existing_context: Sequence[KnowledgeContext] = (),
        config: Optional[RetrievalConfig] = None,
        embedding_api_key: Optional[str] = None,
        log: Any = None,
    ) -> list[KnowledgeContext]:
        log = log or logger
        active = (config or self._config).with_overrides(
            max_results=max_results, search_depth=search_depth
        )
        started = perf_now()

        keywords = extract_keywords(query)
        limit = active.max_results * 2
        vector_results, graph_results = await asyncio.gather(
            self._within_budget(
                "vector",
                self.vector_search(
                    query,
                    subject,
                    grade,
                    limit,
                    scope_id=scope_id,
                    embedding_api_key=embedding_api_key,
                    log=log,
                ),
                log,
            ),
            self._within_budget(
                "graph",
                self.graph_search(subject, grade, keywords, limit, scope_id=scope_id, log=log),
                log,
            ),
        )

        fused = fuse_results(vector_results, graph_results, active)
        top = fused[: active.max_results]
        contexts = await self._enrich(top, active.search_depth, log)
        merged = merge_with_existing(existing_context, contexts) if existing_context else contexts

        log.info(
            "hybrid_search_completed",
            subject=subject,
            grade=grade,
            keyword_count=len(keywords),
            vector_count=len(vector_results),
            graph_count=len(graph_results),
            result_count=len(merged),
            duration_ms=elapsed_ms(started),
        )
        return merged

    async def vector_search(
        self,
        query: str,
        subject: str,
        grade: str,
        limit: int,
        *,
        scope_id: Optional[str] = None,
        embedding_api_key: Optional[str] = None,
        log: Any = None,
    ) -> list[SearchResult]:
        """Cosine-ranked candidates; keyword-overlap scores when the query cannot be embedded."""
        log = log or logger
        try:
            candidates = await self._fetch_candidates(subject, grade, scope_id)
        except DegradableRetrievalError as exc:
            self._record_degradation(exc, log)
            return []
        if not candidates:
            log.info("vector_search_no_candidates", subject=subject, grade=grade)
            return []

        try:
            query_vector = await self._embed(query, embedding_api_key)
        except DegradableRetrievalError as exc:
            self._record_degradation(exc, log)
            query_vector = None

        if query_vector is None:
            results = [
                SearchResult(
                    node=node,
                    score=keyword_overlap_score(query, node.search_text, node.importance),
                    metadata={"scoring": "keyword"},
                )
                for node in candidates
            ]
        else:
            semaphore = asyncio.Semaphore(self._embedding_concurrency)
            results = list(
                await asyncio.gather(
                    *(
                        self._score_candidate(
                            query, query_vector, node, semaphore, embedding_api_key, log
                        )
                        for node in candidates
                    )
                )
            )

        for result in results:
            result.vector_score = result.score
        results.sort(key=lambda item: item.score, reverse=True)
        return results[:limit]

    async def graph_search(
        self,
        subject: str,
        grade: str,
        keywords: Sequence[str],
        limit: int,
        *,
        scope_id: Optional[str] = None,
        log: Any = None,
    ) -> list[SearchResult]:
        """Importance-ranked keyword matches from the graph store; empty on any failure."""
        log = log or logger
        try:
            results = await self._graph.graph_query(subject, grade, list(keywords), limit, scope_id)
        except Exception as exc:
            self._record_degradation(
                DegradableRetrievalError(f"graph search failed: {exc}", path="graph"), log
            )
            return []

        for result in results:
            if result.score is None:
                result.score = result.node.importance or 1
            result.graph_score = result.score
        ranked = sorted(results, key=lambda item: item.score, reverse=True)
        return ranked[:limit]

    async def get_subgraph(
        self, node_id: str, depth: Optional[int] = None, *, log: Any = None
    ) -> KnowledgeSubgraph:
        """Neighbourhood of one node for visualisation. Store failures propagate."""
        log = log or logger
        resolved_depth = depth or self._config.search_depth
        if resolved_depth <= 0:
            raise ValueError("depth must be greater than 0")
        subgraph = await self._graph.get_subgraph(node_id, resolved_depth)
        log.info(
            "knowledge_subgraph_loaded",
            node_id=node_id,
            depth=resolved_depth,
            node_count=len(subgraph.nodes),
            link_count=len(subgraph.links),
        )
        return subgraph

    async def _fetch_candidates(
        self, subject: str, grade: str, scope_id: Optional[str]
    ) -> list[KnowledgeNode]:
        try:
            return await self._graph.fetch_candidates(subject, grade, scope_id)
        except Exception as exc:
            raise DegradableRetrievalError(
                f"candidate lookup failed: {exc}", path="vector"
            ) from exc

    async def _embed(self, text: str, api_key: Optional[str] = None) -> list[float]:
        if self._embedder is None:
            raise DegradableRetrievalError("no embedding provider configured", path="embedding")
        try:
            vector = await self._embedder.embed(text, api_key=api_key)
        except Exception as exc:
            raise DegradableRetrievalError(
                f"embedding unavailable: {exc}", path="embedding"
            ) from exc
        if not vector:
            raise DegradableRetrievalError("embedding service returned no vector", path="embedding")
        return vector

    async def _score_candidate(
        self,
        query: str,
        query_vector: Sequence[float],
        node: KnowledgeNode,
        semaphore: asyncio.Semaphore,
        api_key: Optional[str],
        log: Any,
    ) -> SearchResult:
        embedding: Optional[Sequence[float]] = node.embedding
        if not embedding:
            try:
                async with semaphore:
                    embedding = await self._embed(node.embedding_text, api_key)
            except DegradableRetrievalError as exc:
                log.debug("candidate_embedding_failed", node_id=node.id, error=exc.message)
                return SearchResult(
                    node=node,
                    score=keyword_overlap_score(query, node.search_text, node.importance),
                    metadata={"scoring": "keyword"},
                )
        return SearchResult(
            node=node,
            score=cosine_similarity(query_vector, embedding),
            metadata={"scoring": "cosine"},
        )

    async def _within_budget(
        self, path: str, search: Awaitable[list[SearchResult]], log: Any
    ) -> list[SearchResult]:
        try:
            return await asyncio.wait_for(search, timeout=self._timeout_seconds)
        except asyncio.TimeoutError:
            self._record_degradation(
                DegradableRetrievalError(
                    f"{path} search exceeded {self._timeout_seconds}s", path=path
                ),
                log,
            )
            return []

    async def _enrich(
        self, results: Sequence[SearchResult], depth: int, log: Any
    ) -> list[KnowledgeContext]:
        return list(
            await asyncio.gather(*(self._enrich_one(result, depth, log) for result in results))
        )

    async def _enrich_one(self, result: SearchResult, depth: int, log: Any) -> KnowledgeContext:
        try:
            (node, _relations), prerequisites = await asyncio.gather(
                self._graph.fetch_node_with_neighborhood(result.node_id, depth),
                self._graph.fetch_prerequisites(result.node_id),
            )
        except Exception as exc:
            log.warning("enrichment_failed", node_id=result.node_id, error=str(exc))
            self._metrics.record_retrieval_degradation("enrichment")
            return KnowledgeContext(
                id=result.node_id,
                name=result.node.name,
                content=result.node.content or result.node.description or "",
                relevance_score=result.score,
                source=KNOWLEDGE_GRAPH_SOURCE,
            )
        return KnowledgeContext(
            id=result.node_id,
            name=node.name,
            content=build_context_body(node, prerequisites),
            relevance_score=result.score,
            source=KNOWLEDGE_GRAPH_SOURCE,
        )

    def _record_degradation(self, exc: DegradableRetrievalError, log: Any) -> None:
        log.warning("retrieval_degraded", path=exc.path, error=exc.message)
        self._metrics.record_retrieval_degradation(exc.path)
