from __future__ import annotations

from typing import Any, Optional

from lesson_agent.domain.lesson.models import GenerationRequest, KnowledgeContext
from lesson_agent.domain.retrieval.models import RetrievalConfig
from lesson_agent.services.knowledge.hybrid_retrieval_engine import HybridRetrievalEngine


def build_retrieval_query(request: GenerationRequest) -> str:
    parts = [request.topic, request.subject, request.grade, request.requirements or ""]
    return " ".join(part.strip() for part in parts if part and part.strip())


async def retrieve_knowledge(
    engine: HybridRetrievalEngine,
    request: GenerationRequest,
    *,
    config: Optional[RetrievalConfig] = None,
    embedding_api_key: Optional[str] = None,
    log: Any = None,
) -> list[KnowledgeContext]:
    """Knowledge context for a lesson request, scoped to the caller and merged with its own context."""
    return await engine.hybrid_search(
        build_retrieval_query(request),
        request.subject,
        request.grade,
        scope_id=request.user_scope,
        existing_context=request.context,
        config=config,
        embedding_api_key=embedding_api_key,
        log=log,
    )
