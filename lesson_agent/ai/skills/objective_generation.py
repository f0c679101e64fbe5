"""Objective design skill: three-part objectives, key/difficult points, teaching methods."""

from __future__ import annotations

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from lesson_agent.ai.skills.prompt_blocks import (
    LESSON_DESIGNER_PERSONA,
    knowledge_block,
    lesson_header,
    objectives_block,
)
from lesson_agent.ai.structured_chat import StructuredChat
from lesson_agent.domain.interfaces.chat_model import ChatMessage, ChatOptions
from lesson_agent.domain.interfaces.lesson_skills import SkillResult
from lesson_agent.domain.lesson.models import GenerationRequest, LessonObjectives
from lesson_agent.domain.lesson.workflow_state import WorkflowState
from lesson_agent.domain.request_overrides import NO_OVERRIDES, RequestOverrides
from lesson_agent.infrastructure.observability.logger_config import elapsed_ms, perf_now

logger = structlog.get_logger(__name__)

_OBJECTIVES_SYSTEM = f"""{LESSON_DESIGNER_PERSONA}

三维教学目标设计原则：
1. 知识与技能：明确、具体、可测量，描述学生应掌握的核心知识和基本技能
2. 过程与方法：关注学习过程，培养学习能力和思维方法
3. 情感态度价值观：关注情感体验、学习态度和价值观培养

要求使用行为动词（理解、掌握、运用、分析、评价等），符合学生年龄特点，三个维度有机统一。"""

_OBJECTIVES_SCHEMA = """{
  "knowledge": "知识与技能目标",
  "process": "过程与方法目标",
  "emotion": "情感态度价值观目标"
}"""

_KEY_POINTS_SCHEMA = """{
  "keyPoints": ["重点1", "重点2"],
  "difficultPoints": ["难点1", "难点2"]
}"""

_METHODS_SCHEMA = """{
  "methods": ["教学方法1（使用场景说明）", "教学方法2（使用场景说明）"]
}"""


class _KeyPointsReply(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    key_points: list[str] = Field(default_factory=list)
    difficult_points: list[str] = Field(default_factory=list)


class _MethodsReply(BaseModel):
    methods: list[str] = Field(default_factory=list)


class ObjectiveGenerationSkill:
    def __init__(self, structured_chat: StructuredChat):
        self._chat = structured_chat

    async def generate_objectives(
        self,
        request: GenerationRequest,
        state: WorkflowState,
        *,
        overrides: RequestOverrides = NO_OVERRIDES,
    ) -> SkillResult:
        started = perf_now()
        prompt = (
            "请为以下课程设计三维教学目标：\n\n"
            f"{lesson_header(request)}\n\n"
            f"相关知识点：\n{knowledge_block(state.knowledge_context, limit=500)}\n\n"
            "请根据以上信息，设计符合课程标准的三维教学目标。"
        )
        objectives, usage = await self._chat.generate(
            [
                ChatMessage(role="system", content=_OBJECTIVES_SYSTEM),
                ChatMessage(role="user", content=prompt),
            ],
            LessonObjectives,
            _OBJECTIVES_SCHEMA,
            ChatOptions(temperature=0.5, api_key=overrides.generation_api_key),
        )
        logger.info(
            "objectives_generated",
            topic=request.topic,
            duration_ms=elapsed_ms(started),
            total_tokens=usage.total_tokens,
        )
        return SkillResult(partial={"objectives": objectives}, usage=usage)

    async def generate_key_points(
        self,
        request: GenerationRequest,
        state: WorkflowState,
        *,
        overrides: RequestOverrides = NO_OVERRIDES,
    ) -> SkillResult:
        prompt = (
            "根据以下信息，确定本节课的教学重点和难点：\n\n"
            f"{lesson_header(request, include_duration=False)}\n\n"
            f"教学目标：\n{objectives_block(state.objectives)}\n\n"
            f"相关知识点：\n{knowledge_block(state.knowledge_context, limit=200)}\n\n"
            "教学重点是学生必须掌握的核心内容；教学难点是学生较难理解或容易出错的内容。"
        )
        reply, usage = await self._chat.generate(
            [
                ChatMessage(role="system", content="你是一位经验丰富的教学设计专家，擅长分析教学内容的重点和难点。"),
                ChatMessage(role="user", content=prompt),
            ],
            _KeyPointsReply,
            _KEY_POINTS_SCHEMA,
            ChatOptions(temperature=0.5, api_key=overrides.generation_api_key),
        )
        return SkillResult(
            partial={"key_points": reply.key_points, "difficult_points": reply.difficult_points},
            usage=usage,
        )

    async def generate_teaching_methods(
        self,
        request: GenerationRequest,
        state: WorkflowState,
        *,
        overrides: RequestOverrides = NO_OVERRIDES,
    ) -> SkillResult:
        prompt = (
            "根据以下信息，推荐适合的教学方法：\n\n"
            f"{lesson_header(request)}\n\n"
            f"教学目标：\n{objectives_block(state.objectives)}\n\n"
            "请推荐3-5种适合本节课的教学方法，并简要说明使用场景。"
        )
        reply, usage = await self._chat.generate(
            [
                ChatMessage(role="system", content="你是一位教学法专家，熟悉各种教学方法及其适用场景。"),
                ChatMessage(role="user", content=prompt),
            ],
            _MethodsReply,
            _METHODS_SCHEMA,
            ChatOptions(temperature=0.6, api_key=overrides.generation_api_key),
        )
        return SkillResult(partial={"teaching_methods": reply.methods}, usage=usage)
