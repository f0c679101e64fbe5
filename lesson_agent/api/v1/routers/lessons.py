from __future__ import annotations

import uuid
from typing import AsyncIterator

import structlog
from fastapi import APIRouter, Depends, Response
from fastapi.responses import StreamingResponse

from lesson_agent.api.v1.errors import ERROR_RESPONSES, ApiError
from lesson_agent.core.dependencies import TRACE_ID_HEADER, get_container, get_request_overrides
from lesson_agent.domain.lesson.models import GenerationRequest, GenerationResponse
from lesson_agent.domain.request_overrides import RequestOverrides
from lesson_agent.infrastructure.container import LessonContainer
from lesson_agent.workflows.lesson.orchestrator import GENERIC_FAILURE_MESSAGE, LessonWorkflow
from lesson_agent.workflows.lesson.progress_channel import SSE_DONE, encode_event, encode_sse

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["lessons"], responses=ERROR_RESPONSES)


def get_workflow(container: LessonContainer = Depends(get_container)) -> LessonWorkflow:
    try:
        return container.workflow
    except Exception as exc:
        logger.error("workflow_unavailable", error=str(exc))
        raise ApiError(
            status_code=503,
            code="WORKFLOW_UNAVAILABLE",
            message="Lesson generation is not configured",
            details=str(exc),
        ) from exc


@router.post(
    "/lessons/generate",
    response_model=GenerationResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
)
async def generate_lesson(
    request: GenerationRequest,
    response: Response,
    workflow: LessonWorkflow = Depends(get_workflow),
    overrides: RequestOverrides = Depends(get_request_overrides),
) -> GenerationResponse:
    response.headers[TRACE_ID_HEADER] = overrides.trace_id or ""
    return await workflow.generate(request, run_id=uuid.uuid4().hex, overrides=overrides)


@router.post("/lessons/generate/stream")
async def stream_lesson(
    request: GenerationRequest,
    workflow: LessonWorkflow = Depends(get_workflow),
    overrides: RequestOverrides = Depends(get_request_overrides),
) -> StreamingResponse:
    run_id = uuid.uuid4().hex

    async def _event_stream() -> AsyncIterator[str]:
        events = workflow.stream(request, run_id=run_id, overrides=overrides)
        try:
            async for event in events:
                yield encode_event(event)
        except Exception as exc:
            logger.error(
                "lesson_stream_failed", run_id=run_id, trace_id=overrides.trace_id, error=str(exc)
            )
            yield encode_sse({"error": GENERIC_FAILURE_MESSAGE})
        finally:
            # Client disconnects close this generator; closing `events` cancels the producer.
            await events.aclose()
        yield SSE_DONE

    return StreamingResponse(
        _event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
            "X-Run-Id": run_id,
            TRACE_ID_HEADER: overrides.trace_id or "",
        },
    )
