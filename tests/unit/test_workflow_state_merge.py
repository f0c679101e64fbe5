import pytest

from lesson_agent.domain.lesson.models import GenerationRequest, LessonObjectives
from lesson_agent.domain.lesson.workflow_state import (
    CANONICAL_ORDER,
    ProgressEvent,
    Stage,
    WorkflowState,
    merge_state,
)
from lesson_agent.domain.usage import TokenUsage


def _state(**kwargs) -> WorkflowState:
    return WorkflowState(input=GenerationRequest(subject="数学", grade="七年级", topic="方程", duration=40), **kwargs)


def _u(prompt: int, completion: int) -> TokenUsage:
    return TokenUsage(prompt_tokens=prompt, completion_tokens=completion, total_tokens=prompt + completion)


def test_canonical_order_is_fixed():
    assert [stage.value for stage in CANONICAL_ORDER] == [
        "inputAnalysis",
        "knowledgeQuery",
        "objectiveDesign",
        "contentDesign",
        "activityDesign",
        "outputFormat",
    ]


def test_merge_overwrites_plain_fields_and_sums_usage():
    state = _state(usage=_u(10, 5))

    merged = merge_state(state, {"key_points": ["重点"], "usage": _u(1, 2)})

    assert merged.key_points == ("重点",)
    assert merged.usage == _u(11, 7)
    assert state.key_points is None


def test_merge_never_replaces_start_time():
    state = _state(start_time=100)

    merged = merge_state(state, {"start_time": 999, "end_time": 200})

    assert merged.start_time == 100
    assert merged.end_time == 200


def test_error_partial_drops_its_own_content_fields():
    state = _state()

    merged = merge_state(
        state,
        {"error": "生成的教学目标不完整", "objectives": LessonObjectives(knowledge="x"), "usage": _u(5, 5)},
    )

    assert merged.error == "生成的教学目标不完整"
    assert merged.objectives is None
    assert merged.usage == _u(5, 5)


def test_first_error_wins_and_later_content_is_ignored():
    state = _state(error="学科不能为空")

    merged = merge_state(state, {"error": "其他错误", "homework": "作业", "end_time": 5, "usage": _u(1, 1)})

    assert merged.error == "学科不能为空"
    assert merged.homework is None
    assert merged.end_time == 5
    assert merged.usage == _u(1, 1)


def test_unknown_field_is_rejected():
    with pytest.raises(ValueError):
        merge_state(_state(), {"lessonObjectives": {}})


def test_progress_event_payload_uses_wire_names():
    event = ProgressEvent(
        Stage.OBJECTIVE_DESIGN,
        {
            "objectives": LessonObjectives(knowledge="k", process="p", affective="a"),
            "key_points": ["重点"],
            "usage": _u(3, 4),
        },
    )

    assert event.to_payload() == {
        "node": "objectiveDesign",
        "state": {
            "lessonObjectives": {"knowledge": "k", "process": "p", "emotion": "a"},
            "keyPoints": ["重点"],
            "usage": {"promptTokens": 3, "completionTokens": 4, "totalTokens": 7},
        },
    }
