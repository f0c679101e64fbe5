"""
Lesson workflow orchestrator.

Drives the fixed stage sequence, folds every stage result into the run state
through `merge_state`, and jumps to the output stage as soon as an error is
recorded. Blocking and streaming modes share `_execute`; streaming runs it in
a producer task that publishes to a per-run ProgressChannel.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional

from lesson_agent.domain.lesson.models import GenerationRequest, GenerationResponse, UsageSummary
from lesson_agent.domain.lesson.workflow_state import (
    CANONICAL_ORDER,
    TERMINAL_STAGE,
    ProgressEvent,
    Stage,
    WorkflowState,
    merge_state,
)
from lesson_agent.domain.request_overrides import RequestOverrides
from lesson_agent.infrastructure.observability.logger_config import elapsed_ms, perf_now
from lesson_agent.workflows.lesson.context import LessonDependencies, RunContext
from lesson_agent.workflows.lesson.nodes import STAGE_HANDLERS, StageHandler
from lesson_agent.workflows.lesson.progress_channel import ProgressChannel

GENERIC_FAILURE_MESSAGE = "教学设计生成失败"

Emit = Callable[[ProgressEvent], Awaitable[None]]


def next_stage(current: Stage, state: WorkflowState) -> Stage:
    if state.error:
        return TERMINAL_STAGE
    return CANONICAL_ORDER[CANONICAL_ORDER.index(current) + 1]


@dataclass
class _RunTrace:
    """Latest merged state, kept so a crash can still report usage and timestamps."""

    state: WorkflowState
    failed_stage: Optional[str] = None


class LessonWorkflow:
    def __init__(
        self,
        deps: LessonDependencies,
        handlers: Optional[dict[Stage, StageHandler]] = None,
    ):
        self._deps = deps
        self._handlers = handlers or STAGE_HANDLERS

    async def run(
        self,
        request: GenerationRequest,
        *,
        run_id: Optional[str] = None,
        overrides: Optional[RequestOverrides] = None,
    ) -> WorkflowState:
        """Blocking mode: always returns a terminal state, never raises a domain error."""
        ctx = RunContext.start(self._deps, run_id, overrides)
        trace = _RunTrace(state=self._initial_state(request))
        try:
            return await self._execute(ctx, trace, emit=None)
        except Exception:
            ctx.log.error("workflow_crashed", exc_info=True)
            return self._crashed_state(ctx, trace)

    async def stream(
        self,
        request: GenerationRequest,
        *,
        run_id: Optional[str] = None,
        overrides: Optional[RequestOverrides] = None,
    ) -> AsyncIterator[ProgressEvent]:
        """Streaming mode: one event per executed stage, always ending with the output stage."""
        ctx = RunContext.start(self._deps, run_id, overrides)
        channel = ProgressChannel(self._deps.policy.channel_size)
        producer = asyncio.create_task(self._produce(ctx, request, channel))
        try:
            async for event in channel:
                yield event
        finally:
            if not producer.done():
                producer.cancel()
                self._deps.metrics.record_run_cancelled()
                ctx.log.info("workflow_stream_aborted")
            await asyncio.wait({producer})
            if not producer.cancelled() and producer.exception() is not None:
                ctx.log.error("workflow_producer_failed", error=str(producer.exception()))

    async def generate(
        self,
        request: GenerationRequest,
        *,
        run_id: Optional[str] = None,
        overrides: Optional[RequestOverrides] = None,
    ) -> GenerationResponse:
        state = await self.run(request, run_id=run_id, overrides=overrides)
        return to_response(state)

    async def _produce(
        self, ctx: RunContext, request: GenerationRequest, channel: ProgressChannel
    ) -> None:
        trace = _RunTrace(state=self._initial_state(request))
        try:
            await self._execute(ctx, trace, emit=channel.publish)
        except asyncio.CancelledError:
            raise
        except Exception:
            ctx.log.error("workflow_crashed", exc_info=True)
            crashed = self._crashed_state(ctx, trace)
            await channel.publish(
                ProgressEvent(
                    TERMINAL_STAGE,
                    {"error": crashed.error, "usage": crashed.usage, "end_time": crashed.end_time},
                )
            )
        finally:
            await channel.close()

    def _initial_state(self, request: GenerationRequest) -> WorkflowState:
        return WorkflowState(input=request, start_time=self._deps.clock())

    async def _execute(
        self, ctx: RunContext, trace: _RunTrace, emit: Optional[Emit]
    ) -> WorkflowState:
        metrics = self._deps.metrics
        metrics.record_run_started()
        run_started = perf_now()
        ctx.log.info("workflow_started", topic=trace.state.input.topic)

        stage = Stage.INPUT_ANALYSIS
        while True:
            stage_started = perf_now()
            stage_ctx = ctx.for_stage(stage.value)
            try:
                partial = await self._handlers[stage](trace.state, stage_ctx)
            except Exception as exc:
                # A stage broke its contract; route through the normal short-circuit.
                stage_ctx.log.error("stage_crashed", error=str(exc), exc_info=True)
                partial = {"error": GENERIC_FAILURE_MESSAGE}
                if stage is TERMINAL_STAGE:
                    partial["end_time"] = self._deps.clock()

            had_error = bool(trace.state.error)
            trace.state = merge_state(trace.state, partial)
            if trace.state.error and not had_error:
                trace.failed_stage = stage.value
            stage_ctx.log.info(
                "stage_completed",
                duration_ms=elapsed_ms(stage_started),
                errored=bool(trace.state.error),
            )

            if emit is not None:
                await emit(ProgressEvent(stage, dict(partial)))
            if stage is TERMINAL_STAGE:
                break
            stage = next_stage(stage, trace.state)

        state = trace.state
        if state.error:
            metrics.record_run_failed(trace.failed_stage or TERMINAL_STAGE.value)
        else:
            metrics.record_run_succeeded()
        ctx.log.info(
            "workflow_finished",
            success=not state.error,
            error=state.error,
            total_tokens=state.usage.total_tokens,
            duration_ms=elapsed_ms(run_started),
        )
        return state

    def _crashed_state(self, ctx: RunContext, trace: _RunTrace) -> WorkflowState:
        self._deps.metrics.record_run_failed(trace.failed_stage or "orchestrator")
        return merge_state(
            trace.state,
            {"error": GENERIC_FAILURE_MESSAGE, "end_time": self._deps.clock()},
        )


def to_response(state: WorkflowState) -> GenerationResponse:
    usage = UsageSummary(
        prompt_tokens=state.usage.prompt_tokens,
        completion_tokens=state.usage.completion_tokens,
        total_tokens=state.usage.total_tokens,
    )
    if state.error or state.output is None:
        return GenerationResponse(
            success=False, error=state.error or GENERIC_FAILURE_MESSAGE, usage=usage
        )
    return GenerationResponse(success=True, data=state.output, usage=usage)
