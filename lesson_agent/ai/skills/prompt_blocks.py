from __future__ import annotations

from typing import Iterable, Optional

from lesson_agent.domain.lesson.models import (
    GenerationRequest,
    KnowledgeContext,
    LessonObjectives,
    LessonSection,
)

LESSON_DESIGNER_PERSONA = "你是一位经验丰富的教学设计专家，熟悉课程标准，擅长设计科学合理、可操作的教学方案。"


def lesson_header(request: GenerationRequest, *, include_duration: bool = True) -> str:
    lines = [
        f"学科：{request.subject}",
        f"年级：{request.grade}",
        f"课题：{request.topic}",
    ]
    if include_duration:
        lines.append(f"课时：{request.duration}分钟")
    if request.style:
        lines.append(f"教学风格：{request.style}")
    if request.requirements:
        lines.append(f"特殊要求：{request.requirements}")
    return "\n".join(lines)


def objectives_block(objectives: Optional[LessonObjectives]) -> str:
    if objectives is None:
        return "（暂无）"
    return (
        f"- 知识与技能：{objectives.knowledge}\n"
        f"- 过程与方法：{objectives.process}\n"
        f"- 情感态度价值观：{objectives.affective}"
    )


def bullet_list(items: Optional[Iterable[str]]) -> str:
    rendered = [f"- {item}" for item in (items or ()) if item]
    return "\n".join(rendered) if rendered else "（暂无）"


def knowledge_block(contexts: Optional[Iterable[KnowledgeContext]], limit: int = 300) -> str:
    rendered = [f"【{context.name}】\n{(context.content or '')[:limit]}" for context in contexts or ()]
    return "\n\n".join(rendered) if rendered else "（暂无相关知识点）"


def sections_summary(sections: Optional[Iterable[LessonSection]], limit: int = 100) -> str:
    return "\n".join(
        f"{section.title}（{section.duration}分钟）：{(section.content or '')[:limit]}"
        for section in sections or ()
    )
