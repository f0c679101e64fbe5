from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Optional


@dataclass(frozen=True)
class RetrievalConfig:
    """Weights and limits for hybrid retrieval. Immutable; override per call."""

    vector_weight: float = 0.6
    graph_weight: float = 0.4
    max_results: int = 10
    search_depth: int = 2

    def __post_init__(self) -> None:
        for name in ("vector_weight", "graph_weight"):
            value = getattr(self, name)
            if not 0.0 <= float(value) <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if self.vector_weight + self.graph_weight <= 0:
            raise ValueError("vector_weight + graph_weight must be greater than 0")
        if int(self.max_results) <= 0:
            raise ValueError("max_results must be greater than 0")
        if int(self.search_depth) <= 0:
            raise ValueError("search_depth must be greater than 0")

    def with_overrides(self, **overrides: Any) -> "RetrievalConfig":
        clean = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **clean) if clean else self


@dataclass(frozen=True)
class KnowledgeNode:
    """A knowledge point as stored in the graph."""

    id: str
    name: str
    description: str = ""
    content: str = ""
    subject: str = ""
    grade: str = ""
    difficulty: Optional[str] = None
    importance: Optional[float] = None
    examples: tuple[str, ...] = ()
    embedding: Optional[tuple[float, ...]] = None
    scope_id: Optional[str] = None

    @property
    def embedding_text(self) -> str:
        return f"{self.name}: {self.description}. {self.content}"

    @property
    def search_text(self) -> str:
        return f"{self.name} {self.description} {self.content}"


@dataclass(frozen=True)
class NodeRelation:
    source_id: str
    target_id: str
    type: str


@dataclass
class SearchResult:
    """Candidate produced by one retrieval path; lives only during fusion."""

    node: KnowledgeNode
    score: float
    vector_score: Optional[float] = None
    graph_score: Optional[float] = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def node_id(self) -> str:
        return self.node.id


@dataclass(frozen=True)
class KnowledgeSubgraph:
    """Nodes and links around a center node, for visualisation."""

    nodes: tuple[KnowledgeNode, ...] = ()
    links: tuple[NodeRelation, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.nodes
