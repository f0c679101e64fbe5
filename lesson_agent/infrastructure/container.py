"""
Lesson Container - infrastructure wiring.

Builds the long-lived collaborators once and hands them to the workflow by
constructor injection. Everything is created lazily so tests can pre-seed
any collaborator with a fake.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Optional

import structlog

from lesson_agent.ai.skills.content_generation import ContentGenerationSkill
from lesson_agent.ai.skills.evaluation_design import EvaluationDesignSkill
from lesson_agent.ai.skills.objective_generation import ObjectiveGenerationSkill
from lesson_agent.ai.structured_chat import StructuredChat
from lesson_agent.core.observability.generation_metrics import generation_metrics_store
from lesson_agent.core.settings import Settings, settings as default_settings
from lesson_agent.domain.interfaces.chat_model import IChatModel
from lesson_agent.domain.interfaces.embedding_provider import IEmbeddingProvider
from lesson_agent.domain.interfaces.knowledge_graph import IKnowledgeGraph
from lesson_agent.infrastructure.graph.networkx_store import InMemoryKnowledgeGraph
from lesson_agent.infrastructure.llm.chat_client import LangChainChatClient, build_chat_model
from lesson_agent.infrastructure.llm.embedding_client import OpenAICompatibleEmbeddingProvider
from lesson_agent.services.knowledge.hybrid_retrieval_engine import HybridRetrievalEngine
from lesson_agent.workflows.lesson.context import LessonDependencies, WorkflowPolicy
from lesson_agent.workflows.lesson.orchestrator import LessonWorkflow

logger = structlog.get_logger(__name__)


class LessonContainer:
    """
    IoC Container for the lesson generation services.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        chat_model: Optional[IChatModel] = None,
        embedding_provider: Optional[IEmbeddingProvider] = None,
        knowledge_graph: Optional[IKnowledgeGraph] = None,
    ):
        self._settings = settings or default_settings
        self._chat_model = chat_model
        self._embedding_provider = embedding_provider
        self._knowledge_graph = knowledge_graph
        self._structured_chat: Optional[StructuredChat] = None
        self._retrieval_engine: Optional[HybridRetrievalEngine] = None
        self._workflow: Optional[LessonWorkflow] = None

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def chat_model(self) -> IChatModel:
        if self._chat_model is None:
            self._chat_model = LangChainChatClient(
                build_chat_model(self._settings),
                max_attempts=self._settings.LLM_MAX_RETRIES,
                model_for_key=lambda api_key: build_chat_model(self._settings, api_key=api_key),
            )
        return self._chat_model

    @property
    def embedding_provider(self) -> IEmbeddingProvider:
        if self._embedding_provider is None:
            self._embedding_provider = OpenAICompatibleEmbeddingProvider.from_settings(self._settings)
        return self._embedding_provider

    @property
    def knowledge_graph(self) -> IKnowledgeGraph:
        if self._knowledge_graph is None:
            path = self._settings.KNOWLEDGE_GRAPH_PATH
            if path:
                self._knowledge_graph = InMemoryKnowledgeGraph.from_json_file(path)
            else:
                logger.warning("knowledge_graph_empty", reason="KNOWLEDGE_GRAPH_PATH not set")
                self._knowledge_graph = InMemoryKnowledgeGraph()
        return self._knowledge_graph

    @property
    def structured_chat(self) -> StructuredChat:
        if self._structured_chat is None:
            self._structured_chat = StructuredChat(self.chat_model)
        return self._structured_chat

    @property
    def retrieval_engine(self) -> HybridRetrievalEngine:
        if self._retrieval_engine is None:
            self._retrieval_engine = HybridRetrievalEngine(
                self.knowledge_graph,
                self.embedding_provider,
                self._settings.retrieval_config(),
                timeout_seconds=self._settings.RETRIEVAL_TIMEOUT_SECONDS,
                embedding_concurrency=self._settings.EMBEDDING_CONCURRENCY,
            )
        return self._retrieval_engine

    @property
    def workflow(self) -> LessonWorkflow:
        if self._workflow is None:
            self._workflow = LessonWorkflow(
                LessonDependencies(
                    retrieval=self.retrieval_engine,
                    objective_skill=ObjectiveGenerationSkill(self.structured_chat),
                    content_skill=ContentGenerationSkill(
                        self.structured_chat, max_tokens=self._settings.LLM_MAX_TOKENS
                    ),
                    evaluation_skill=EvaluationDesignSkill(self.structured_chat),
                    policy=WorkflowPolicy.from_settings(self._settings),
                    metrics=generation_metrics_store,
                )
            )
        return self._workflow

    def health(self) -> dict[str, Any]:
        return {
            "status": "ok",
            "retrieval": asdict(self.retrieval_engine.get_config()),
            "metrics": generation_metrics_store.snapshot(),
        }

    async def startup(self) -> None:
        logger.info(
            "lesson_container_started",
            llm_model=self._settings.LLM_MODEL,
            embedding_model=self._settings.EMBEDDING_MODEL,
        )

    async def shutdown(self) -> None:
        close = getattr(self._embedding_provider, "close", None)
        if close is not None:
            await close()
