"""
In-memory knowledge graph backed by networkx.

Serves local development and tests; a production deployment plugs a graph
database adapter into the same `IKnowledgeGraph` port. Edges are directed;
`PREREQUISITE_FOR` points from the prerequisite to the dependent point.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

import networkx as nx
import structlog

from lesson_agent.domain.retrieval.models import (
    KnowledgeNode,
    KnowledgeSubgraph,
    NodeRelation,
    SearchResult,
)

logger = structlog.get_logger(__name__)

PREREQUISITE_FOR = "PREREQUISITE_FOR"


def _node_from_dict(raw: dict[str, Any]) -> KnowledgeNode:
    embedding = raw.get("embedding")
    return KnowledgeNode(
        id=str(raw["id"]),
        name=str(raw.get("name") or ""),
        description=str(raw.get("description") or ""),
        content=str(raw.get("content") or ""),
        subject=str(raw.get("subject") or ""),
        grade=str(raw.get("grade") or ""),
        difficulty=raw.get("difficulty"),
        importance=raw.get("importance"),
        examples=tuple(str(item) for item in raw.get("examples") or ()),
        embedding=tuple(float(value) for value in embedding) if embedding else None,
        scope_id=raw.get("scope_id") or raw.get("scopeId"),
    )


class InMemoryKnowledgeGraph:
    def __init__(self, graph: Optional[nx.DiGraph] = None):
        self._graph = graph if graph is not None else nx.DiGraph()

    @classmethod
    def from_records(
        cls,
        nodes: Iterable[dict[str, Any]],
        relations: Iterable[dict[str, Any]] = (),
    ) -> "InMemoryKnowledgeGraph":
        store = cls()
        for raw in nodes:
            store.add_node(_node_from_dict(raw))
        for raw in relations:
            store.add_relation(str(raw["source"]), str(raw["target"]), str(raw.get("type") or "RELATED_TO"))
        return store

    @classmethod
    def from_json_file(cls, path: str | Path) -> "InMemoryKnowledgeGraph":
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        store = cls.from_records(payload.get("nodes") or [], payload.get("relations") or [])
        logger.info(
            "knowledge_graph_loaded",
            path=str(path),
            nodes=store._graph.number_of_nodes(),
            relations=store._graph.number_of_edges(),
        )
        return store

    def add_node(self, node: KnowledgeNode) -> None:
        self._graph.add_node(node.id, node=node)

    def add_relation(self, source_id: str, target_id: str, relation_type: str) -> None:
        if source_id not in self._graph or target_id not in self._graph:
            raise KeyError(f"unknown node in relation {source_id}->{target_id}")
        self._graph.add_edge(source_id, target_id, type=relation_type)

    def _node(self, node_id: str) -> KnowledgeNode:
        if node_id not in self._graph:
            raise KeyError(f"knowledge node not found: {node_id}")
        return self._graph.nodes[node_id]["node"]

    def _matching(self, subject: str, grade: str, scope_id: Optional[str]) -> list[KnowledgeNode]:
        nodes = [data["node"] for _, data in self._graph.nodes(data=True)]
        return [
            node
            for node in nodes
            if node.subject == subject
            and node.grade == grade
            and (scope_id is None or node.scope_id == scope_id)
        ]

    async def fetch_candidates(
        self, subject: str, grade: str, scope_id: Optional[str] = None
    ) -> list[KnowledgeNode]:
        candidates = self._matching(subject, grade, scope_id)
        return sorted(candidates, key=lambda node: node.importance or 0, reverse=True)

    async def graph_query(
        self,
        subject: str,
        grade: str,
        keywords: Sequence[str],
        limit: int,
        scope_id: Optional[str] = None,
    ) -> list[SearchResult]:
        terms = [keyword.lower() for keyword in keywords if keyword]
        if not terms:
            return []
        hits = []
        for node in self._matching(subject, grade, scope_id):
            haystack = f"{node.name} {node.description}".lower()
            if any(term in haystack for term in terms):
                hits.append(SearchResult(node=node, score=float(node.importance or 1)))
        hits.sort(key=lambda item: item.score, reverse=True)
        return hits[:limit]

    async def fetch_node_with_neighborhood(
        self, node_id: str, depth: int
    ) -> tuple[KnowledgeNode, list[NodeRelation]]:
        node = self._node(node_id)
        neighborhood = nx.ego_graph(self._graph.to_undirected(as_view=True), node_id, radius=depth)
        relations = [
            NodeRelation(source_id=source, target_id=target, type=attrs.get("type", ""))
            for source, target, attrs in self._graph.subgraph(neighborhood.nodes).edges(data=True)
        ]
        return node, relations

    async def fetch_prerequisites(self, node_id: str) -> list[KnowledgeNode]:
        self._node(node_id)
        return [
            self._node(source)
            for source, _, attrs in self._graph.in_edges(node_id, data=True)
            if attrs.get("type") == PREREQUISITE_FOR
        ]

    async def get_subgraph(self, node_id: str, depth: int) -> KnowledgeSubgraph:
        if node_id not in self._graph:
            return KnowledgeSubgraph()
        neighborhood = nx.ego_graph(self._graph.to_undirected(as_view=True), node_id, radius=depth)
        # Center first, then breadth-first distance.
        distances = nx.single_source_shortest_path_length(neighborhood, node_id)
        ordered = sorted(neighborhood.nodes, key=lambda item: (distances[item], item))
        links = [
            NodeRelation(source_id=source, target_id=target, type=attrs.get("type", ""))
            for source, target, attrs in self._graph.subgraph(ordered).edges(data=True)
        ]
        return KnowledgeSubgraph(
            nodes=tuple(self._node(item) for item in ordered),
            links=tuple(links),
        )
