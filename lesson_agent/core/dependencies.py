import uuid
from typing import Optional

from fastapi import Header, Request

from lesson_agent.domain.request_overrides import RequestOverrides
from lesson_agent.infrastructure.container import LessonContainer

TRACE_ID_HEADER = "X-Trace-ID"
REQUEST_ID_HEADER = "X-Request-ID"


def get_container(request: Request) -> LessonContainer:
    """
    Dependency injection for the LessonContainer.
    Pulls the instance from the app state (initialized in lifespan).
    """
    return request.app.state.container


def get_request_overrides(
    x_generation_api_key: Optional[str] = Header(default=None),
    x_embedding_api_key: Optional[str] = Header(default=None),
    x_trace_id: Optional[str] = Header(default=None),
    x_request_id: Optional[str] = Header(default=None),
) -> RequestOverrides:
    """
    Caller-supplied API keys and the inbound trace id for one request.
    A trace id is generated when the caller sends neither trace header.
    """
    trace_id = (x_trace_id or "").strip() or (x_request_id or "").strip() or uuid.uuid4().hex
    return RequestOverrides.from_values(
        generation_api_key=x_generation_api_key,
        embedding_api_key=x_embedding_api_key,
        trace_id=trace_id,
    )
