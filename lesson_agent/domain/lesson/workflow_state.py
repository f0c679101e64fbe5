from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel

from lesson_agent.domain.lesson.models import (
    GeneratedLesson,
    GenerationRequest,
    KnowledgeContext,
    LessonObjectives,
    LessonSection,
)
from lesson_agent.domain.usage import TokenUsage, ZERO_USAGE, merge_usage


class Stage(str, Enum):
    INPUT_ANALYSIS = "inputAnalysis"
    KNOWLEDGE_QUERY = "knowledgeQuery"
    OBJECTIVE_DESIGN = "objectiveDesign"
    CONTENT_DESIGN = "contentDesign"
    ACTIVITY_DESIGN = "activityDesign"
    OUTPUT_FORMAT = "outputFormat"


CANONICAL_ORDER: tuple[Stage, ...] = tuple(Stage)
TERMINAL_STAGE = Stage.OUTPUT_FORMAT


@dataclass(frozen=True)
class WorkflowState:
    """Aggregate threaded through the stages. Only `merge_state` produces new versions."""

    input: GenerationRequest
    knowledge_context: Optional[tuple[KnowledgeContext, ...]] = None
    objectives: Optional[LessonObjectives] = None
    key_points: Optional[tuple[str, ...]] = None
    difficult_points: Optional[tuple[str, ...]] = None
    teaching_methods: Optional[tuple[str, ...]] = None
    sections: Optional[tuple[LessonSection, ...]] = None
    materials: Optional[tuple[str, ...]] = None
    homework: Optional[str] = None
    evaluation: Optional[str] = None
    output: Optional[GeneratedLesson] = None
    error: Optional[str] = None
    usage: TokenUsage = ZERO_USAGE
    start_time: Optional[int] = None
    end_time: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.output is not None and not self.error

    def to_payload(self) -> dict[str, Any]:
        return fragment_payload(
            {item.name: getattr(self, item.name) for item in fields(self)}
        )


STATE_FIELDS: frozenset[str] = frozenset(item.name for item in fields(WorkflowState))
# Fields that may still be merged after an error has been recorded.
BOOKKEEPING_FIELDS: frozenset[str] = frozenset({"usage", "start_time", "end_time"})

_WIRE_NAMES: dict[str, str] = {
    "input": "input",
    "knowledge_context": "knowledgeContext",
    "objectives": "lessonObjectives",
    "key_points": "keyPoints",
    "difficult_points": "difficultPoints",
    "teaching_methods": "teachingMethods",
    "sections": "sections",
    "materials": "materials",
    "homework": "homework",
    "evaluation": "evaluation",
    "output": "output",
    "error": "error",
    "usage": "usage",
    "start_time": "startTime",
    "end_time": "endTime",
}


def _freeze(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(value)
    return value


def merge_state(previous: WorkflowState, partial: Mapping[str, Any]) -> WorkflowState:
    """Fold one stage's partial result into the running state.

    Plain fields are overwritten. `usage` is summed, `start_time` is kept once
    set, and after an error (recorded earlier or in this same partial) only
    bookkeeping fields are accepted.
    """
    unknown = set(partial) - STATE_FIELDS
    if unknown:
        raise ValueError(f"unknown workflow state fields: {sorted(unknown)}")

    errored = bool(previous.error) or bool(partial.get("error"))
    updates: dict[str, Any] = {}
    for key, value in partial.items():
        if key == "usage":
            continue
        if key == "start_time":
            if value is not None and previous.start_time is None:
                updates[key] = value
            continue
        if key == "error":
            if value and not previous.error:
                updates[key] = str(value)
            continue
        if errored and key not in BOOKKEEPING_FIELDS:
            continue
        updates[key] = _freeze(value)

    updates["usage"] = merge_usage(previous.usage, partial.get("usage"))
    return replace(previous, **updates)


def _payload_value(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True, exclude_none=True)
    if isinstance(value, TokenUsage):
        return value.to_payload()
    if isinstance(value, (list, tuple)):
        return [_payload_value(item) for item in value]
    return value


def fragment_payload(fragment: Mapping[str, Any]) -> dict[str, Any]:
    """camelCase JSON-ready view of a (partial) state; unset fields are omitted."""
    return {
        _WIRE_NAMES.get(key, key): _payload_value(value)
        for key, value in fragment.items()
        if value is not None
    }


@dataclass(frozen=True)
class ProgressEvent:
    stage: Stage
    fragment: Mapping[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {"node": self.stage.value, "state": fragment_payload(self.fragment)}
