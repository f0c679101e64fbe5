from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Optional

import structlog

from lesson_agent.core.observability.generation_metrics import (
    GenerationMetricsStore,
    generation_metrics_store,
)
from lesson_agent.domain.interfaces.lesson_skills import IContentSkill, IEvaluationSkill, IObjectiveSkill
from lesson_agent.domain.request_overrides import NO_OVERRIDES, RequestOverrides
from lesson_agent.domain.retrieval.models import RetrievalConfig
from lesson_agent.services.knowledge.hybrid_retrieval_engine import HybridRetrievalEngine


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class WorkflowPolicy:
    min_duration: int = 20
    max_duration: int = 180
    min_objective_length: int = 10
    channel_size: int = 16

    @classmethod
    def from_settings(cls, settings: Any) -> "WorkflowPolicy":
        return cls(
            min_duration=int(settings.MIN_LESSON_DURATION),
            max_duration=int(settings.MAX_LESSON_DURATION),
            min_objective_length=int(settings.MIN_OBJECTIVE_LENGTH),
            channel_size=int(settings.PROGRESS_CHANNEL_SIZE),
        )


@dataclass(frozen=True)
class LessonDependencies:
    """Long-lived collaborators shared read-only by every run."""

    retrieval: HybridRetrievalEngine
    objective_skill: IObjectiveSkill
    content_skill: IContentSkill
    evaluation_skill: IEvaluationSkill
    policy: WorkflowPolicy = field(default_factory=WorkflowPolicy)
    retrieval_config: Optional[RetrievalConfig] = None
    clock: Callable[[], int] = now_ms
    metrics: GenerationMetricsStore = generation_metrics_store


@dataclass(frozen=True)
class RunContext:
    """Per-run context passed explicitly down every stage call."""

    run_id: str
    deps: LessonDependencies
    log: Any
    overrides: RequestOverrides = NO_OVERRIDES

    @classmethod
    def start(
        cls,
        deps: LessonDependencies,
        run_id: Optional[str] = None,
        overrides: Optional[RequestOverrides] = None,
    ) -> "RunContext":
        resolved = run_id or uuid.uuid4().hex
        overrides = overrides or NO_OVERRIDES
        log = structlog.get_logger("lesson_agent.workflow").bind(run_id=resolved)
        if overrides.trace_id:
            log = log.bind(trace_id=overrides.trace_id)
        return cls(run_id=resolved, deps=deps, log=log, overrides=overrides)

    def for_stage(self, stage: str) -> "RunContext":
        return replace(self, log=self.log.bind(stage=stage))
