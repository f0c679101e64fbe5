"""Content design skill: teaching sections, materials and homework."""

from __future__ import annotations

import structlog
from pydantic import BaseModel, Field

from lesson_agent.ai.skills.prompt_blocks import (
    LESSON_DESIGNER_PERSONA,
    bullet_list,
    knowledge_block,
    lesson_header,
    objectives_block,
    sections_summary,
)
from lesson_agent.ai.structured_chat import StructuredChat
from lesson_agent.domain.interfaces.chat_model import ChatMessage, ChatOptions
from lesson_agent.domain.interfaces.lesson_skills import SkillResult
from lesson_agent.domain.lesson.models import GenerationRequest, LessonSection
from lesson_agent.domain.lesson.workflow_state import WorkflowState
from lesson_agent.domain.request_overrides import NO_OVERRIDES, RequestOverrides
from lesson_agent.infrastructure.observability.logger_config import elapsed_ms, perf_now

logger = structlog.get_logger(__name__)

_SECTIONS_SYSTEM = f"""{LESSON_DESIGNER_PERSONA}

教学环节设计原则：
1. 导入环节：激发兴趣，建立联系，明确目标
2. 新授环节：循序渐进，突出重点，突破难点
3. 练习环节：及时反馈，巩固知识，形成技能
4. 总结环节：梳理知识，归纳方法，拓展延伸

每个环节都要包含明确的教师活动、对应的学生活动、具体的教学内容和清晰的设计意图。
注重学生的主体地位，体现师生互动，时间分配合理。"""

_SECTIONS_SCHEMA = """{
  "sections": [
    {
      "title": "环节名称",
      "duration": 5,
      "teacherActivity": "教师活动描述",
      "studentActivity": "学生活动描述",
      "content": "教学内容",
      "designIntent": "设计意图"
    }
  ]
}"""

_MATERIALS_SCHEMA = """{
  "materials": ["资源1", "资源2"]
}"""


class _SectionsReply(BaseModel):
    sections: list[LessonSection] = Field(default_factory=list)


class _MaterialsReply(BaseModel):
    materials: list[str] = Field(default_factory=list)


class ContentGenerationSkill:
    def __init__(self, structured_chat: StructuredChat, max_tokens: int = 4096):
        self._chat = structured_chat
        self._max_tokens = max_tokens

    async def generate_sections(
        self,
        request: GenerationRequest,
        state: WorkflowState,
        *,
        overrides: RequestOverrides = NO_OVERRIDES,
    ) -> SkillResult:
        """Raw sections as the model proposed them; durations are rescaled by the stage."""
        started = perf_now()
        prompt = (
            "请为以下课程设计完整的教学过程：\n\n"
            f"{lesson_header(request)}\n\n"
            f"教学目标：\n{objectives_block(state.objectives)}\n\n"
            f"教学重点：\n{bullet_list(state.key_points)}\n\n"
            f"教学难点：\n{bullet_list(state.difficult_points)}\n\n"
            f"相关知识：\n{knowledge_block(state.knowledge_context)}\n\n"
            "请设计5-7个教学环节，包括：导入、新授、练习、总结等。\n"
            "每个环节需要详细描述教师活动、学生活动、教学内容和设计意图。\n"
            f"确保各环节时间之和等于{request.duration}分钟。"
        )
        reply, usage = await self._chat.generate(
            [
                ChatMessage(role="system", content=_SECTIONS_SYSTEM),
                ChatMessage(role="user", content=prompt),
            ],
            _SectionsReply,
            _SECTIONS_SCHEMA,
            ChatOptions(
                temperature=0.7,
                max_tokens=self._max_tokens,
                api_key=overrides.generation_api_key,
            ),
        )
        logger.info(
            "sections_generated",
            topic=request.topic,
            section_count=len(reply.sections),
            duration_ms=elapsed_ms(started),
            total_tokens=usage.total_tokens,
        )
        return SkillResult(partial={"sections": reply.sections}, usage=usage)

    async def generate_materials(
        self,
        request: GenerationRequest,
        state: WorkflowState,
        *,
        overrides: RequestOverrides = NO_OVERRIDES,
    ) -> SkillResult:
        prompt = (
            "根据以下教学设计，列出需要准备的教学资源和材料：\n\n"
            f"{lesson_header(request, include_duration=False)}\n\n"
            f"教学环节：\n{sections_summary(state.sections)}\n\n"
            "请列出：\n"
            "1. 教具（如：实物、模型等）\n"
            "2. 学具（学生需要准备的材料）\n"
            "3. 多媒体资源（如：PPT、视频、音频等）\n"
            "4. 其他资源（如：导学案、练习题等）"
        )
        reply, usage = await self._chat.generate(
            [
                ChatMessage(role="system", content="你是一位经验丰富的教师，擅长准备教学资源和材料。"),
                ChatMessage(role="user", content=prompt),
            ],
            _MaterialsReply,
            _MATERIALS_SCHEMA,
            ChatOptions(temperature=0.5, api_key=overrides.generation_api_key),
        )
        return SkillResult(partial={"materials": reply.materials}, usage=usage)

    async def generate_homework(
        self,
        request: GenerationRequest,
        state: WorkflowState,
        *,
        overrides: RequestOverrides = NO_OVERRIDES,
    ) -> SkillResult:
        knowledge_goal = state.objectives.knowledge if state.objectives else ""
        prompt = (
            "根据以下教学内容，设计课后作业：\n\n"
            f"{lesson_header(request, include_duration=False)}\n\n"
            f"教学目标：\n{knowledge_goal}\n\n"
            f"教学重点：\n{bullet_list(state.key_points)}\n\n"
            "请设计：\n"
            "1. 基础作业（巩固基础知识）\n"
            "2. 提高作业（能力提升，可选做）\n"
            "3. 实践作业（联系生活实际，可选做）\n\n"
            "要求：作业量适中，符合\"双减\"政策；分层设计，照顾不同水平学生；形式多样，不局限于书面作业。"
        )
        result = await self._chat.complete(
            [
                ChatMessage(role="system", content="你是一位经验丰富的教师，擅长设计科学合理的课后作业。"),
                ChatMessage(role="user", content=prompt),
            ],
            ChatOptions(temperature=0.6, api_key=overrides.generation_api_key),
        )
        return SkillResult(partial={"homework": result.text.strip()}, usage=result.usage)
