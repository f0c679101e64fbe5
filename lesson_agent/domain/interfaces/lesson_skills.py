from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol

from lesson_agent.domain.lesson.models import GenerationRequest
from lesson_agent.domain.lesson.workflow_state import WorkflowState
from lesson_agent.domain.request_overrides import NO_OVERRIDES, RequestOverrides
from lesson_agent.domain.usage import TokenUsage, ZERO_USAGE


@dataclass(frozen=True)
class SkillResult:
    """Partial workflow state produced by one generation call, plus its token cost."""

    partial: Mapping[str, Any] = field(default_factory=dict)
    usage: TokenUsage = ZERO_USAGE


class IObjectiveSkill(Protocol):
    async def generate_objectives(
        self,
        request: GenerationRequest,
        state: WorkflowState,
        *,
        overrides: RequestOverrides = NO_OVERRIDES,
    ) -> SkillResult: ...

    async def generate_key_points(
        self,
        request: GenerationRequest,
        state: WorkflowState,
        *,
        overrides: RequestOverrides = NO_OVERRIDES,
    ) -> SkillResult: ...

    async def generate_teaching_methods(
        self,
        request: GenerationRequest,
        state: WorkflowState,
        *,
        overrides: RequestOverrides = NO_OVERRIDES,
    ) -> SkillResult: ...


class IContentSkill(Protocol):
    async def generate_sections(
        self,
        request: GenerationRequest,
        state: WorkflowState,
        *,
        overrides: RequestOverrides = NO_OVERRIDES,
    ) -> SkillResult: ...

    async def generate_materials(
        self,
        request: GenerationRequest,
        state: WorkflowState,
        *,
        overrides: RequestOverrides = NO_OVERRIDES,
    ) -> SkillResult: ...

    async def generate_homework(
        self,
        request: GenerationRequest,
        state: WorkflowState,
        *,
        overrides: RequestOverrides = NO_OVERRIDES,
    ) -> SkillResult: ...


class IEvaluationSkill(Protocol):
    async def generate_evaluation(
        self,
        request: GenerationRequest,
        state: WorkflowState,
        *,
        overrides: RequestOverrides = NO_OVERRIDES,
    ) -> SkillResult: ...
