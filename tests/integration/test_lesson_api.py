from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Optional, Sequence

from fastapi.testclient import TestClient

from lesson_agent.core.settings import Settings
from lesson_agent.domain.interfaces.chat_model import ChatMessage, ChatOptions, ChatResult
from lesson_agent.domain.usage import TokenUsage
from lesson_agent.infrastructure.container import LessonContainer
from lesson_agent.infrastructure.graph.networkx_store import InMemoryKnowledgeGraph
from lesson_agent.main import app
from tests.fakes import FakeEmbedder

_SCRIPT = [
    ("三维教学目标", '{"knowledge": "理解一元一次方程的概念并会求解", "process": "经历从实际问题抽象出方程的过程", "emotion": "体会方程思想在生活中的广泛价值"}'),
    ("教学重点和难点", '{"keyPoints": ["方程的解法"], "difficultPoints": ["移项变号"]}'),
    ("推荐适合的教学方法", '{"methods": ["讲授法", "练习法"]}'),
    (
        "完整的教学过程",
        '{"sections": ['
        '{"title": "导入", "duration": 5, "teacherActivity": "创设情境", "studentActivity": "思考", "content": "天平", "designIntent": "激趣"},'
        '{"title": "新授", "duration": 20, "teacherActivity": "讲解", "studentActivity": "练习", "content": "解法", "designIntent": "突破重点"},'
        '{"title": "总结", "duration": 5, "teacherActivity": "归纳", "studentActivity": "回顾", "content": "小结", "designIntent": "梳理"}'
        "]}",
    ),
    ("教学资源和材料", '{"materials": ["多媒体课件", "天平教具"]}'),
    ("课后作业", "基础作业：课本第3页习题"),
    ("教学评价方案", "课堂评价：观察与提问"),
]


@dataclass
class _ScriptedChatModel:
    """Answers each generation prompt by recognising its task phrase."""

    calls: list[str] = field(default_factory=list)
    api_keys: list[Optional[str]] = field(default_factory=list)

    async def chat(
        self, messages: Sequence[ChatMessage], options: Optional[ChatOptions] = None
    ) -> ChatResult:
        self.api_keys.append(options.api_key if options is not None else None)
        prompt = messages[-1].content
        for phrase, reply in _SCRIPT:
            if phrase in prompt:
                self.calls.append(phrase)
                return ChatResult(
                    text=reply,
                    usage=TokenUsage(prompt_tokens=10, completion_tokens=20, total_tokens=30),
                )
        raise AssertionError(f"unexpected prompt: {prompt[:60]}")


def _container(chat_model=None, embedder=None) -> LessonContainer:
    graph = InMemoryKnowledgeGraph.from_records(
        [
            {
                "id": "equation",
                "name": "一元一次方程",
                "description": "只含一个未知数的方程",
                "content": "ax+b=0",
                "subject": "数学",
                "grade": "七年级",
                "importance": 9,
            },
            {
                "id": "rational",
                "name": "有理数",
                "description": "整数与分数",
                "subject": "数学",
                "grade": "六年级",
            },
        ],
        [{"source": "rational", "target": "equation", "type": "PREREQUISITE_FOR"}],
    )
    return LessonContainer(
        Settings(_env_file=None),
        chat_model=chat_model or _ScriptedChatModel(),
        embedding_provider=embedder or FakeEmbedder(default=[1.0, 0.0, 0.0]),
        knowledge_graph=graph,
    )


def _client(container: LessonContainer) -> TestClient:
    app.state.container = container
    return TestClient(app)


PAYLOAD = {"subject": "数学", "grade": "初一", "topic": "一元一次方程", "duration": 45}


def test_generate_returns_lesson_with_usage():
    chat = _ScriptedChatModel()
    with _client(_container(chat)) as client:
        response = client.post("/api/v1/lessons/generate", json=PAYLOAD)

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    lesson = body["data"]
    assert lesson["title"] == "数学 七年级 《一元一次方程》教学设计"
    assert lesson["objectives"]["emotion"].startswith("体会方程思想")
    assert lesson["keyPoints"] == ["方程的解法"]
    assert [section["duration"] for section in lesson["content"]["sections"]] == [8, 30, 7]
    assert lesson["content"]["sections"][0]["teacherActivity"] == "创设情境"
    assert lesson["content"]["homework"] == "基础作业：课本第3页习题"
    assert body["usage"] == {"promptTokens": 70, "completionTokens": 140, "totalTokens": 210}
    assert sorted(chat.calls) == sorted(phrase for phrase, _ in _SCRIPT)


def test_invalid_duration_is_reported_in_envelope():
    with _client(_container()) as client:
        response = client.post("/api/v1/lessons/generate", json={**PAYLOAD, "duration": 10})

    assert response.status_code == 200
    assert response.json() == {
        "success": False,
        "error": "课时时长应在20-180分钟之间",
        "usage": {"promptTokens": 0, "completionTokens": 0, "totalTokens": 0},
    }


def test_stream_emits_stage_events_then_done():
    with _client(_container()) as client:
        response = client.post("/api/v1/lessons/generate/stream", json=PAYLOAD)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["x-run-id"]
    frames = [line[len("data: "):] for line in response.text.split("\n\n") if line.startswith("data: ")]
    assert frames[-1] == "[DONE]"
    events = [json.loads(frame) for frame in frames[:-1]]
    assert [event["node"] for event in events] == [
        "inputAnalysis",
        "knowledgeQuery",
        "objectiveDesign",
        "contentDesign",
        "activityDesign",
        "outputFormat",
    ]
    assert events[1]["state"]["knowledgeContext"][0]["id"] == "equation"
    assert events[-1]["state"]["output"]["title"].endswith("《一元一次方程》教学设计")


def test_stream_short_circuits_on_invalid_input():
    with _client(_container()) as client:
        response = client.post("/api/v1/lessons/generate/stream", json={**PAYLOAD, "subject": ""})

    frames = [line[len("data: "):] for line in response.text.split("\n\n") if line.startswith("data: ")]
    events = [json.loads(frame) for frame in frames[:-1]]
    assert [event["node"] for event in events] == ["inputAnalysis", "outputFormat"]
    assert events[0]["state"] == {"error": "学科不能为空"}
    assert frames[-1] == "[DONE]"


def test_malformed_body_is_rejected_with_contract_error():
    with _client(_container()) as client:
        response = client.post("/api/v1/lessons/generate", json={**PAYLOAD, "duration": "forty"})

    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "INVALID_REQUEST"
    assert any("duration" in detail["loc"] for detail in error["details"])


def test_unconfigured_workflow_returns_service_unavailable():
    class _BrokenContainer(LessonContainer):
        @property
        def workflow(self):
            raise RuntimeError("LLM_API_KEY missing")

    with _client(_BrokenContainer(Settings(_env_file=None))) as client:
        response = client.post("/api/v1/lessons/generate", json=PAYLOAD)

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "WORKFLOW_UNAVAILABLE"


def test_health_reports_retrieval_config_and_metrics():
    with _client(_container()) as client:
        response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["retrieval"] == {"vector_weight": 0.6, "graph_weight": 0.4, "max_results": 10, "search_depth": 2}
    assert "runs_started" in body["metrics"]


def test_request_keys_and_trace_id_flow_through_the_run():
    chat = _ScriptedChatModel()
    embedder = FakeEmbedder(default=[1.0, 0.0, 0.0])
    headers = {
        "X-Generation-Api-Key": "sk-gen-caller",
        "X-Embedding-Api-Key": "sk-emb-caller",
        "X-Trace-ID": "trace-abc",
    }
    with _client(_container(chat, embedder)) as client:
        response = client.post("/api/v1/lessons/generate", json=PAYLOAD, headers=headers)

    assert response.status_code == 200
    assert response.json()["success"] is True
    assert response.headers["x-trace-id"] == "trace-abc"
    assert chat.api_keys and set(chat.api_keys) == {"sk-gen-caller"}
    assert embedder.api_keys and set(embedder.api_keys) == {"sk-emb-caller"}


def test_trace_id_falls_back_to_request_id_then_is_generated():
    with _client(_container()) as client:
        echoed = client.post(
            "/api/v1/lessons/generate/stream",
            json={**PAYLOAD, "subject": ""},
            headers={"X-Request-ID": "req-42"},
        )
        generated = client.post("/api/v1/lessons/generate", json={**PAYLOAD, "duration": 10})

    assert echoed.headers["x-trace-id"] == "req-42"
    assert len(generated.headers["x-trace-id"]) == 32


def test_runs_without_key_headers_use_configured_keys():
    chat = _ScriptedChatModel()
    with _client(_container(chat)) as client:
        client.post("/api/v1/lessons/generate", json=PAYLOAD)

    assert set(chat.api_keys) == {None}


def test_knowledge_subgraph_returns_nodes_and_links():
    with _client(_container()) as client:
        response = client.get("/api/v1/knowledge/equation/subgraph", params={"depth": 1})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert [item["id"] for item in body["data"]["nodes"]] == ["equation", "rational"]
    assert body["data"]["nodes"][0]["name"] == "一元一次方程"
    assert body["data"]["links"] == [
        {"source": "rational", "target": "equation", "type": "PREREQUISITE_FOR"}
    ]


def test_knowledge_subgraph_of_unknown_node_is_empty():
    with _client(_container()) as client:
        response = client.get("/api/v1/knowledge/missing/subgraph")

    assert response.status_code == 200
    assert response.json() == {"success": True, "data": {"nodes": [], "links": []}}


def test_knowledge_subgraph_rejects_out_of_range_depth():
    with _client(_container()) as client:
        response = client.get("/api/v1/knowledge/equation/subgraph", params={"depth": 0})

    assert response.status_code == 422
    assert response.json()["error"]["code"] == "INVALID_REQUEST"


def test_knowledge_subgraph_store_failure_is_reported():
    class _FailingGraph(InMemoryKnowledgeGraph):
        async def get_subgraph(self, node_id, depth):
            raise ConnectionError("graph store offline")

    container = LessonContainer(
        Settings(_env_file=None),
        chat_model=_ScriptedChatModel(),
        embedding_provider=FakeEmbedder(default=[1.0, 0.0, 0.0]),
        knowledge_graph=_FailingGraph(),
    )
    with _client(container) as client:
        response = client.get("/api/v1/knowledge/equation/subgraph")

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "KNOWLEDGE_SUBGRAPH_FAILED"
