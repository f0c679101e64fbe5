from __future__ import annotations

import structlog

from lesson_agent.ai.skills.prompt_blocks import bullet_list, lesson_header, objectives_block
from lesson_agent.ai.structured_chat import StructuredChat
from lesson_agent.domain.interfaces.chat_model import ChatMessage, ChatOptions
from lesson_agent.domain.interfaces.lesson_skills import SkillResult
from lesson_agent.domain.lesson.models import GenerationRequest
from lesson_agent.domain.lesson.workflow_state import WorkflowState
from lesson_agent.domain.request_overrides import NO_OVERRIDES, RequestOverrides
from lesson_agent.infrastructure.observability.logger_config import elapsed_ms, perf_now

logger = structlog.get_logger(__name__)

_EVALUATION_SYSTEM = """你是一位教学评价专家，擅长设计科学合理的教学评价方案。

教学评价设计原则：
1. 评价目标与教学目标一致
2. 评价方式多样化（观察、提问、练习、作品、测试等）
3. 过程性评价与终结性评价相结合
4. 自评、互评、师评相结合
5. 评价要具有诊断、反馈、激励功能"""


class EvaluationDesignSkill:
    def __init__(self, structured_chat: StructuredChat):
        self._chat = structured_chat

    async def generate_evaluation(
        self,
        request: GenerationRequest,
        state: WorkflowState,
        *,
        overrides: RequestOverrides = NO_OVERRIDES,
    ) -> SkillResult:
        started = perf_now()
        outline = "、".join(f"{section.title}（{section.duration}分钟）" for section in state.sections or ())
        prompt = (
            "请为以下课程设计教学评价方案：\n\n"
            f"{lesson_header(request, include_duration=False)}\n\n"
            f"教学目标：\n{objectives_block(state.objectives)}\n\n"
            f"教学重点：\n{bullet_list(state.key_points)}\n\n"
            f"教学环节：{outline}\n\n"
            "请设计包含以下内容的评价方案：\n"
            "1. 课堂评价（过程性评价）：每个环节的评价要点、评价方式和工具\n"
            "2. 学习效果评价（终结性评价）：评价标准、评价方式\n"
            "3. 评价建议：对教师和对学生的评价建议"
        )
        result = await self._chat.complete(
            [
                ChatMessage(role="system", content=_EVALUATION_SYSTEM),
                ChatMessage(role="user", content=prompt),
            ],
            ChatOptions(temperature=0.6, api_key=overrides.generation_api_key),
        )
        logger.info(
            "evaluation_generated",
            topic=request.topic,
            duration_ms=elapsed_ms(started),
            total_tokens=result.usage.total_tokens,
        )
        return SkillResult(partial={"evaluation": result.text.strip()}, usage=result.usage)
