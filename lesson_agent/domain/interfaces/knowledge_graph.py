from __future__ import annotations

from typing import Optional, Protocol, Sequence

from lesson_agent.domain.retrieval.models import (
    KnowledgeNode,
    KnowledgeSubgraph,
    NodeRelation,
    SearchResult,
)


class IKnowledgeGraph(Protocol):
    """Graph-store capability consumed by the hybrid retrieval engine."""

    async def fetch_candidates(
        self, subject: str, grade: str, scope_id: Optional[str] = None
    ) -> list[KnowledgeNode]: ...

    async def graph_query(
        self,
        subject: str,
        grade: str,
        keywords: Sequence[str],
        limit: int,
        scope_id: Optional[str] = None,
    ) -> list[SearchResult]: ...

    async def fetch_node_with_neighborhood(
        self, node_id: str, depth: int
    ) -> tuple[KnowledgeNode, list[NodeRelation]]: ...

    async def fetch_prerequisites(self, node_id: str) -> list[KnowledgeNode]: ...

    async def get_subgraph(self, node_id: str, depth: int) -> KnowledgeSubgraph: ...
