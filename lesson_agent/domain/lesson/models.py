from __future__ import annotations

import re
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    """camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class KnowledgeContext(_WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    name: str
    content: str = ""
    relevance_score: Optional[float] = None
    source: Optional[str] = None


class GenerationRequest(_WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    subject: str = ""
    grade: str = ""
    topic: str = ""
    duration: int = 0
    style: Optional[str] = None
    requirements: Optional[str] = None
    user_scope: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("userScope", "user_scope", "userId")
    )
    context: tuple[KnowledgeContext, ...] = ()


class LessonObjectives(_WireModel):
    knowledge: str = ""
    process: str = ""
    affective: str = Field(
        default="",
        validation_alias=AliasChoices("emotion", "affective"),
        serialization_alias="emotion",
    )


class LessonSection(_WireModel):
    title: str = ""
    duration: int = 0
    teacher_activity: str = ""
    student_activity: str = ""
    content: str = ""
    design_intent: Optional[str] = None

    @field_validator("duration", mode="before")
    @classmethod
    def _coerce_duration(cls, value: Any) -> int:
        # Models sometimes answer "5分钟" or 7.5 instead of an integer.
        if value is None:
            return 0
        if isinstance(value, str):
            match = re.search(r"\d+", value)
            return int(match.group(0)) if match else 0
        if isinstance(value, float):
            return int(round(value))
        return value


class LessonContent(_WireModel):
    sections: list[LessonSection] = Field(default_factory=list)
    materials: list[str] = Field(default_factory=list)
    homework: str = ""


class GeneratedLesson(_WireModel):
    title: str
    objectives: LessonObjectives
    key_points: list[str] = Field(default_factory=list)
    difficult_points: list[str] = Field(default_factory=list)
    teaching_methods: list[str] = Field(default_factory=list)
    content: LessonContent = Field(default_factory=LessonContent)
    evaluation: str = ""
    reflection: str = ""


class UsageSummary(_WireModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class GenerationResponse(_WireModel):
    """Result envelope of one run. `usage` is reported on failures too."""

    success: bool
    data: Optional[GeneratedLesson] = None
    error: Optional[str] = None
    usage: UsageSummary = Field(default_factory=UsageSummary)
