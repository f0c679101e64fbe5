from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from lesson_agent.domain.retrieval.models import KnowledgeNode, KnowledgeSubgraph, NodeRelation


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SubgraphNode(_CamelModel):
    id: str
    name: str
    description: str = ""
    subject: str = ""
    grade: str = ""
    difficulty: Optional[str] = None
    importance: Optional[float] = None

    @classmethod
    def from_node(cls, node: KnowledgeNode) -> "SubgraphNode":
        return cls(
            id=node.id,
            name=node.name,
            description=node.description,
            subject=node.subject,
            grade=node.grade,
            difficulty=node.difficulty,
            importance=node.importance,
        )


class SubgraphLink(_CamelModel):
    source: str
    target: str
    type: str

    @classmethod
    def from_relation(cls, relation: NodeRelation) -> "SubgraphLink":
        return cls(source=relation.source_id, target=relation.target_id, type=relation.type)


class SubgraphData(_CamelModel):
    nodes: list[SubgraphNode] = Field(default_factory=list)
    links: list[SubgraphLink] = Field(default_factory=list)


class SubgraphResponse(_CamelModel):
    success: bool = True
    data: SubgraphData = Field(default_factory=SubgraphData)

    @classmethod
    def from_subgraph(cls, subgraph: KnowledgeSubgraph) -> "SubgraphResponse":
        return cls(
            data=SubgraphData(
                nodes=[SubgraphNode.from_node(node) for node in subgraph.nodes],
                links=[SubgraphLink.from_relation(link) for link in subgraph.links],
            )
        )
