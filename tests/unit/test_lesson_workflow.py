import asyncio

from lesson_agent.domain.exceptions import IncompleteGenerationError
from lesson_agent.domain.lesson.models import GenerationRequest, KnowledgeContext, LessonObjectives, LessonSection
from lesson_agent.domain.lesson.workflow_state import CANONICAL_ORDER, Stage
from lesson_agent.domain.request_overrides import NO_OVERRIDES, RequestOverrides
from lesson_agent.workflows.lesson.nodes import STAGE_HANDLERS
from lesson_agent.workflows.lesson.orchestrator import GENERIC_FAILURE_MESSAGE, LessonWorkflow
from tests.fakes import (
    VALID_OBJECTIVES,
    FakeContentSkill,
    FakeEmbedder,
    FakeKnowledgeGraph,
    FakeObjectiveSkill,
    build_dependencies,
    node,
    usage,
)

REQUEST = GenerationRequest(subject="数学", grade="初一", topic="一元一次方程", duration=45)

# objectives + key points + methods + sections + materials + homework + evaluation
FULL_RUN_USAGE = usage(100 + 40 + 30 + 200 + 20 + 20 + 25, 50 + 20 + 10 + 300 + 10 + 30 + 35)


async def _collect(workflow: LessonWorkflow, request: GenerationRequest):
    return [event async for event in workflow.stream(request, run_id="stream-run")]


class _BrokenRetrieval:
    async def hybrid_search(self, *args, **kwargs):
        raise RuntimeError("neo4j unreachable")


def test_successful_run_with_empty_knowledge_base():
    deps = build_dependencies()
    state = asyncio.run(LessonWorkflow(deps).run(REQUEST))

    assert state.error is None
    assert state.succeeded
    assert state.knowledge_context == ()
    assert state.input.grade == "七年级"
    assert state.usage == FULL_RUN_USAGE
    assert state.start_time is not None and state.end_time > state.start_time

    lesson = state.output
    assert lesson.title == "数学 七年级 《一元一次方程》教学设计"
    assert sum(section.duration for section in lesson.content.sections) == 45
    assert lesson.content.homework == "完成课后习题1-3"
    assert lesson.evaluation == "课堂观察与练习反馈"
    assert "课题：一元一次方程" in lesson.reflection
    assert deps.metrics.snapshot()["runs_succeeded"] == 1


def test_out_of_range_duration_short_circuits_to_output():
    deps = build_dependencies()
    state = asyncio.run(LessonWorkflow(deps).run(REQUEST.model_copy(update={"duration": 10})))

    assert state.error == "课时时长应在20-180分钟之间"
    assert state.output is None
    assert state.objectives is None
    assert state.usage.total_tokens == 0
    assert state.start_time is not None and state.end_time is not None
    assert deps.metrics.snapshot()["failures_by_stage"] == {"inputAnalysis": 1}


def test_stream_emits_one_event_per_stage_in_order():
    workflow = LessonWorkflow(build_dependencies())

    events = asyncio.run(_collect(workflow, REQUEST))

    assert [event.stage for event in events] == list(CANONICAL_ORDER)
    final = events[-1].to_payload()
    assert final["node"] == "outputFormat"
    assert final["state"]["output"]["title"] == "数学 七年级 《一元一次方程》教学设计"
    assert "endTime" in final["state"]
    assert events[2].to_payload()["state"]["lessonObjectives"]["emotion"] == VALID_OBJECTIVES.affective


def test_stream_short_circuits_after_incomplete_objectives():
    skill = FakeObjectiveSkill(objectives=LessonObjectives(knowledge="太短", process="", affective=""))
    workflow = LessonWorkflow(build_dependencies(objective_skill=skill))

    events = asyncio.run(_collect(workflow, REQUEST))

    assert [event.stage for event in events] == [
        Stage.INPUT_ANALYSIS,
        Stage.KNOWLEDGE_QUERY,
        Stage.OBJECTIVE_DESIGN,
        Stage.OUTPUT_FORMAT,
    ]
    assert events[2].fragment["error"] == "生成的教学目标不完整"
    assert events[2].fragment["usage"] == usage(100, 50)


def test_key_points_and_methods_see_fresh_objectives():
    skill = FakeObjectiveSkill()
    asyncio.run(LessonWorkflow(build_dependencies(objective_skill=skill)).run(REQUEST))

    assert skill.seen_objectives == [VALID_OBJECTIVES, VALID_OBJECTIVES]


def test_objective_generation_failure_keeps_spent_tokens():
    skill = FakeObjectiveSkill(error=IncompleteGenerationError("模型输出无效", usage=usage(7, 3)))
    state = asyncio.run(LessonWorkflow(build_dependencies(objective_skill=skill)).run(REQUEST))

    assert state.error == "模型输出无效"
    assert state.usage == usage(7, 3)


def test_sibling_failure_in_objective_design_keeps_other_usage():
    skill = FakeObjectiveSkill(methods_error=ConnectionError("timeout"))
    state = asyncio.run(LessonWorkflow(build_dependencies(objective_skill=skill)).run(REQUEST))

    assert state.error.startswith("教学重点与教学方法生成失败")
    assert state.key_points is None
    assert state.usage == usage(100 + 40, 50 + 20)


def test_activity_failure_reports_error_and_usage_of_finished_calls():
    content = FakeContentSkill(homework_error=ConnectionError("reset by peer"))
    state = asyncio.run(LessonWorkflow(build_dependencies(content_skill=content)).run(REQUEST))

    assert state.error == "教学活动设计失败: reset by peer"
    assert state.output is None
    assert state.materials is None
    assert state.usage == usage(100 + 40 + 30 + 200 + 20 + 25, 50 + 20 + 10 + 300 + 10 + 35)


def test_empty_sections_fail_content_design():
    content = FakeContentSkill(sections=[])
    state = asyncio.run(LessonWorkflow(build_dependencies(content_skill=content)).run(REQUEST))

    assert state.error == "未能生成教学环节"


def test_assembly_validation_rejects_untitled_section():
    content = FakeContentSkill(sections=[LessonSection(title="", duration=45)])
    deps = build_dependencies(content_skill=content)
    state = asyncio.run(LessonWorkflow(deps).run(REQUEST))

    assert state.error == "教学环节标题不能为空"
    assert state.output is None
    assert state.evaluation == "课堂观察与练习反馈"
    assert deps.metrics.snapshot()["failures_by_stage"] == {"outputFormat": 1}


def test_section_rounded_to_zero_minutes_fails_assembly():
    sections = [
        LessonSection(title=title, duration=minutes, teacher_activity="讲解", student_activity="听讲")
        for title, minutes in [("导入", 10), ("新授", 10), ("练习", 10), ("拓展", 10), ("总结", 1)]
    ]
    deps = build_dependencies(content_skill=FakeContentSkill(sections=sections))

    state = asyncio.run(LessonWorkflow(deps).run(REQUEST.model_copy(update={"duration": 40})))

    assert state.output is None
    assert state.error == '环节"总结"的时长必须大于0'
    assert state.sections[-1].duration == 0


def test_knowledge_query_failure_degrades_to_empty_context():
    deps = build_dependencies(retrieval=_BrokenRetrieval())
    state = asyncio.run(LessonWorkflow(deps).run(REQUEST))

    assert state.succeeded
    assert state.knowledge_context == ()
    assert deps.metrics.snapshot()["retrieval_degradations"] == {"knowledge_query": 1}


def test_caller_context_and_retrieved_nodes_reach_the_state():
    graph = FakeKnowledgeGraph(candidates=[node("eq", subject="数学", grade="七年级")])
    supplied = KnowledgeContext(id="teacher-note", name="教师笔记", content="学生易错点")
    request = REQUEST.model_copy(update={"context": (supplied,), "user_scope": "teacher-1"})

    state = asyncio.run(LessonWorkflow(build_dependencies(graph=graph)).run(request))

    assert [context.id for context in state.knowledge_context] == ["teacher-note", "eq"]
    candidate_query = next(query for query in graph.queries if query["op"] == "candidates")
    assert candidate_query["grade"] == "七年级"
    assert candidate_query["scope_id"] == "teacher-1"


def test_crashing_stage_is_reported_as_generic_failure():
    async def _explode(state, ctx):
        raise RuntimeError("bug")

    deps = build_dependencies()
    workflow = LessonWorkflow(deps, handlers={**STAGE_HANDLERS, Stage.CONTENT_DESIGN: _explode})

    state = asyncio.run(workflow.run(REQUEST))
    events = asyncio.run(_collect(workflow, REQUEST))

    assert state.error == GENERIC_FAILURE_MESSAGE
    assert state.end_time is not None
    assert state.usage == usage(170, 80)
    assert [event.stage for event in events][-2:] == [Stage.CONTENT_DESIGN, Stage.OUTPUT_FORMAT]
    assert events[-2].fragment == {"error": GENERIC_FAILURE_MESSAGE}


def test_defect_outside_stage_contract_still_terminates_runs():
    async def _bad_partial(state, ctx):
        return {"not_a_state_field": True}

    deps = build_dependencies()
    workflow = LessonWorkflow(deps, handlers={**STAGE_HANDLERS, Stage.KNOWLEDGE_QUERY: _bad_partial})

    state = asyncio.run(workflow.run(REQUEST))
    events = asyncio.run(_collect(workflow, REQUEST))

    assert state.error == GENERIC_FAILURE_MESSAGE
    assert state.end_time is not None
    assert [event.stage for event in events] == [Stage.INPUT_ANALYSIS, Stage.OUTPUT_FORMAT]
    assert events[-1].fragment["error"] == GENERIC_FAILURE_MESSAGE


def test_closing_the_stream_cancels_the_run():
    content = FakeContentSkill(homework_delay=30)
    deps = build_dependencies(content_skill=content)
    workflow = LessonWorkflow(deps)

    async def _scenario():
        events = workflow.stream(REQUEST)
        received = []
        async for event in events:
            received.append(event.stage)
            if len(received) == 2:
                break
        await asyncio.wait_for(events.aclose(), timeout=2)
        return received

    received = asyncio.run(_scenario())

    assert received == [Stage.INPUT_ANALYSIS, Stage.KNOWLEDGE_QUERY]
    snapshot = deps.metrics.snapshot()
    assert snapshot["runs_cancelled"] == 1
    assert snapshot["runs_succeeded"] == 0


def test_concurrent_runs_do_not_share_state():
    workflow = LessonWorkflow(build_dependencies())
    geometry = REQUEST.model_copy(update={"topic": "相交线", "duration": 40})

    async def _both():
        return await asyncio.gather(workflow.run(REQUEST), workflow.run(geometry))

    first, second = asyncio.run(_both())

    assert first.output.title.endswith("《一元一次方程》教学设计")
    assert second.output.title.endswith("《相交线》教学设计")
    assert sum(section.duration for section in first.output.content.sections) == 45
    assert sum(section.duration for section in second.output.content.sections) == 40


def test_generate_wraps_state_in_response_envelope():
    workflow = LessonWorkflow(build_dependencies())

    ok = asyncio.run(workflow.generate(REQUEST))
    failed = asyncio.run(workflow.generate(REQUEST.model_copy(update={"topic": ""})))

    assert ok.success is True
    assert ok.usage.total_tokens == FULL_RUN_USAGE.total_tokens
    assert failed.success is False
    assert failed.error == "课题不能为空"
    assert failed.data is None
    assert failed.to_payload()["usage"] == {"promptTokens": 0, "completionTokens": 0, "totalTokens": 0}


def test_request_overrides_reach_skills_and_embedding_calls():
    embedder = FakeEmbedder(default=[1.0, 0.0, 0.0])
    objective_skill = FakeObjectiveSkill()
    deps = build_dependencies(
        graph=FakeKnowledgeGraph(candidates=[node("eq")]),
        embedder=embedder,
        objective_skill=objective_skill,
    )
    overrides = RequestOverrides.from_values(
        generation_api_key="sk-gen", embedding_api_key="sk-emb", trace_id="trace-7"
    )

    state = asyncio.run(LessonWorkflow(deps).run(REQUEST, overrides=overrides))

    assert state.succeeded
    assert objective_skill.seen_overrides == [overrides]
    assert embedder.api_keys and set(embedder.api_keys) == {"sk-emb"}


def test_runs_without_overrides_use_configured_keys():
    embedder = FakeEmbedder(default=[1.0, 0.0, 0.0])
    objective_skill = FakeObjectiveSkill()
    deps = build_dependencies(
        graph=FakeKnowledgeGraph(candidates=[node("eq")]),
        embedder=embedder,
        objective_skill=objective_skill,
    )

    asyncio.run(LessonWorkflow(deps).run(REQUEST))

    assert objective_skill.seen_overrides == [NO_OVERRIDES]
    assert set(embedder.api_keys) == {None}
