"""
Lesson workflow stages.

Each stage receives the current (immutable) state and the run context and
returns only the fields it changed. Domain failures come back as an
`error` field; they are never raised to the orchestrator.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

from lesson_agent.domain.exceptions import (
    AssemblyError,
    IncompleteGenerationError,
    IncompleteObjectivesError,
    ValidationError,
)
from lesson_agent.domain.interfaces.lesson_skills import SkillResult
from lesson_agent.domain.lesson.models import (
    GeneratedLesson,
    GenerationRequest,
    LessonContent,
    LessonObjectives,
)
from lesson_agent.domain.lesson.normalization import is_known_subject, normalize_grade
from lesson_agent.domain.lesson.scheduling import rescale_section_durations
from lesson_agent.domain.lesson.workflow_state import Stage, WorkflowState, merge_state
from lesson_agent.domain.usage import TokenUsage, ZERO_USAGE, merge_usage
from lesson_agent.services.knowledge.knowledge_retrieval import retrieve_knowledge
from lesson_agent.workflows.lesson.context import RunContext, WorkflowPolicy

StageHandler = Callable[[WorkflowState, RunContext], Awaitable[dict[str, Any]]]

REFLECTION_TEMPLATE = """## 教学反思

### 一、目标达成情况
1. 知识与技能目标是否达成？
2. 过程与方法目标是否达成？
3. 情感态度价值观目标是否达成？

### 二、教学过程反思
1. 导入环节是否有效激发了学生兴趣？
2. 新授环节是否突出了重点、突破了难点？
3. 练习环节是否起到了巩固作用？
4. 时间分配是否合理？

### 三、学生表现
1. 学生参与度如何？
2. 学生的理解程度如何？
3. 有哪些意料之外的问题？

### 四、改进措施
1. 教学内容方面需要如何改进？
2. 教学方法方面需要如何改进？
3. 教学评价方面需要如何改进？

---
课题：{topic}
授课时间：______
授课班级：______
反思时间：______
"""


def _generation_failure(label: str, exc: BaseException) -> IncompleteGenerationError:
    if isinstance(exc, IncompleteGenerationError):
        return exc
    return IncompleteGenerationError(f"{label}: {exc}")


def _spent(exc: BaseException) -> Optional[TokenUsage]:
    return exc.usage if isinstance(exc, IncompleteGenerationError) else None


async def _fan_out(
    *calls: Awaitable[SkillResult],
) -> tuple[dict[str, Any], TokenUsage, Optional[BaseException]]:
    """Run independent generation calls concurrently and wait for all of them.

    Usage of every call that spent tokens is kept even when a sibling fails.
    """
    outcomes = await asyncio.gather(*calls, return_exceptions=True)
    partial: dict[str, Any] = {}
    usage = ZERO_USAGE
    failure: Optional[BaseException] = None
    for outcome in outcomes:
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome
        if isinstance(outcome, BaseException):
            failure = failure or outcome
            usage = merge_usage(usage, _spent(outcome))
            continue
        partial.update(outcome.partial)
        usage = merge_usage(usage, outcome.usage)
    return partial, usage, failure


def validate_request(request: GenerationRequest, policy: WorkflowPolicy) -> GenerationRequest:
    """Returns the normalized request or raises ValidationError."""
    subject = (request.subject or "").strip()
    grade = (request.grade or "").strip()
    topic = (request.topic or "").strip()
    if not subject:
        raise ValidationError("学科不能为空", stage=Stage.INPUT_ANALYSIS.value)
    if not grade:
        raise ValidationError("年级不能为空", stage=Stage.INPUT_ANALYSIS.value)
    if not topic:
        raise ValidationError("课题不能为空", stage=Stage.INPUT_ANALYSIS.value)
    if request.duration <= 0:
        raise ValidationError("课时时长必须大于0", stage=Stage.INPUT_ANALYSIS.value)
    if not policy.min_duration <= request.duration <= policy.max_duration:
        raise ValidationError(
            f"课时时长应在{policy.min_duration}-{policy.max_duration}分钟之间",
            stage=Stage.INPUT_ANALYSIS.value,
        )
    return request.model_copy(
        update={
            "subject": subject,
            "grade": normalize_grade(grade),
            "topic": topic,
            "style": request.style.strip() if request.style else request.style,
            "requirements": (
                request.requirements.strip() if request.requirements else request.requirements
            ),
        }
    )


async def input_analysis(state: WorkflowState, ctx: RunContext) -> dict[str, Any]:
    try:
        normalized = validate_request(state.input, ctx.deps.policy)
    except ValidationError as exc:
        ctx.log.warning("input_validation_failed", error=exc.message)
        return {"error": exc.message}

    if not is_known_subject(normalized.subject):
        ctx.log.warning("unknown_subject", subject=normalized.subject)
    ctx.log.info(
        "input_analyzed",
        subject=normalized.subject,
        grade=normalized.grade,
        topic=normalized.topic,
        duration=normalized.duration,
    )
    return {"input": normalized}


async def knowledge_query(state: WorkflowState, ctx: RunContext) -> dict[str, Any]:
    try:
        contexts = await retrieve_knowledge(
            ctx.deps.retrieval,
            state.input,
            config=ctx.deps.retrieval_config,
            embedding_api_key=ctx.overrides.embedding_api_key,
            log=ctx.log,
        )
    except Exception as exc:
        ctx.log.warning("knowledge_query_degraded", error=str(exc))
        ctx.deps.metrics.record_retrieval_degradation("knowledge_query")
        return {"knowledge_context": []}
    return {"knowledge_context": contexts}


def validate_objectives(objectives: Optional[LessonObjectives], min_length: int) -> LessonObjectives:
    values = {
        "knowledge": objectives.knowledge if objectives else "",
        "process": objectives.process if objectives else "",
        "affective": objectives.affective if objectives else "",
    }
    missing = tuple(name for name, value in values.items() if len((value or "").strip()) < min_length)
    if objectives is None or missing:
        raise IncompleteObjectivesError("生成的教学目标不完整", missing_fields=missing)
    return objectives


async def objective_design(state: WorkflowState, ctx: RunContext) -> dict[str, Any]:
    request = state.input
    skill = ctx.deps.objective_skill
    try:
        first = await skill.generate_objectives(request, state, overrides=ctx.overrides)
    except Exception as exc:
        failure = _generation_failure("教学目标生成失败", exc)
        ctx.log.warning("objective_generation_failed", error=failure.message)
        return {"error": failure.message, "usage": _spent(failure)}

    try:
        objectives = validate_objectives(
            first.partial.get("objectives"), ctx.deps.policy.min_objective_length
        )
    except IncompleteObjectivesError as exc:
        ctx.log.warning("objectives_incomplete", missing_fields=list(exc.missing_fields))
        return {"error": exc.message, "usage": first.usage}

    # Key points and methods both read the fresh objectives.
    staged = merge_state(state, {"objectives": objectives})
    partial, usage, failure = await _fan_out(
        skill.generate_key_points(request, staged, overrides=ctx.overrides),
        skill.generate_teaching_methods(request, staged, overrides=ctx.overrides),
    )
    usage = merge_usage(first.usage, usage)
    if failure is not None:
        error = _generation_failure("教学重点与教学方法生成失败", failure)
        ctx.log.warning("objective_design_failed", error=error.message)
        return {"error": error.message, "usage": usage}

    return {"objectives": objectives, **partial, "usage": usage}


async def content_design(state: WorkflowState, ctx: RunContext) -> dict[str, Any]:
    if state.objectives is None:
        return {"error": "缺少教学目标，无法生成教学内容"}

    request = state.input
    try:
        result = await ctx.deps.content_skill.generate_sections(
            request, state, overrides=ctx.overrides
        )
    except Exception as exc:
        failure = _generation_failure("教学环节生成失败", exc)
        ctx.log.warning("section_generation_failed", error=failure.message)
        return {"error": failure.message, "usage": _spent(failure)}

    sections = list(result.partial.get("sections") or [])
    if not sections:
        return {"error": "未能生成教学环节", "usage": result.usage}

    rescaled = rescale_section_durations(sections, request.duration)
    ctx.log.info(
        "sections_scheduled",
        section_count=len(rescaled),
        requested_minutes=request.duration,
        proposed_minutes=sum(section.duration for section in sections),
    )
    return {"sections": rescaled, "usage": result.usage}


async def activity_design(state: WorkflowState, ctx: RunContext) -> dict[str, Any]:
    if not state.sections or state.objectives is None:
        return {"error": "缺少必要的教学信息"}

    request = state.input
    partial, usage, failure = await _fan_out(
        ctx.deps.content_skill.generate_materials(request, state, overrides=ctx.overrides),
        ctx.deps.content_skill.generate_homework(request, state, overrides=ctx.overrides),
        ctx.deps.evaluation_skill.generate_evaluation(request, state, overrides=ctx.overrides),
    )
    if failure is not None:
        error = _generation_failure("教学活动设计失败", failure)
        ctx.log.warning("activity_design_failed", error=error.message)
        return {"error": error.message, "usage": usage}
    return {**partial, "usage": usage}


def assemble_lesson(state: WorkflowState) -> GeneratedLesson:
    request = state.input
    return GeneratedLesson(
        title=f"{request.subject} {request.grade} 《{request.topic}》教学设计",
        objectives=state.objectives or LessonObjectives(),
        key_points=list(state.key_points or ()),
        difficult_points=list(state.difficult_points or ()),
        teaching_methods=list(state.teaching_methods or ()),
        content=LessonContent(
            sections=list(state.sections or ()),
            materials=list(state.materials or ()),
            homework=state.homework or "",
        ),
        evaluation=state.evaluation or "",
        reflection=REFLECTION_TEMPLATE.format(topic=request.topic),
    )


def validate_lesson(lesson: GeneratedLesson) -> None:
    if not lesson.title.strip():
        raise AssemblyError("教案标题不能为空")
    if not lesson.objectives.knowledge.strip():
        raise AssemblyError("教学目标不完整")
    if not lesson.content.sections:
        raise AssemblyError("教学环节不能为空")
    for section in lesson.content.sections:
        if not section.title.strip():
            raise AssemblyError("教学环节标题不能为空")
        if section.duration <= 0:
            raise AssemblyError(f'环节"{section.title}"的时长必须大于0')


async def output_format(state: WorkflowState, ctx: RunContext) -> dict[str, Any]:
    finished_at = ctx.deps.clock()
    if state.error:
        return {"end_time": finished_at}

    lesson = assemble_lesson(state)
    try:
        validate_lesson(lesson)
    except AssemblyError as exc:
        ctx.log.warning("lesson_assembly_failed", error=exc.message)
        return {"error": exc.message, "end_time": finished_at}

    if not lesson.key_points or not lesson.difficult_points:
        ctx.log.warning("output_missing_key_points")
    ctx.log.info(
        "lesson_assembled",
        title=lesson.title,
        section_count=len(lesson.content.sections),
    )
    return {"output": lesson, "end_time": finished_at}


STAGE_HANDLERS: dict[Stage, StageHandler] = {
    Stage.INPUT_ANALYSIS: input_analysis,
    Stage.KNOWLEDGE_QUERY: knowledge_query,
    Stage.OBJECTIVE_DESIGN: objective_design,
    Stage.CONTENT_DESIGN: content_design,
    Stage.ACTIVITY_DESIGN: activity_design,
    Stage.OUTPUT_FORMAT: output_format,
}
