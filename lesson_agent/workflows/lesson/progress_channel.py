from __future__ import annotations

import asyncio
import json
from collections import deque
from typing import Any, Mapping

from lesson_agent.domain.lesson.workflow_state import ProgressEvent

SSE_DONE = "data: [DONE]\n\n"


class ChannelClosedError(RuntimeError):
    pass


class ProgressChannel:
    """Bounded, ordered, single-producer/single-consumer event queue.

    `publish` suspends while the buffer is full; iteration suspends while it
    is empty and ends once the buffer is drained after `close`. Closing never
    waits for buffer space.
    """

    def __init__(self, capacity: int = 16):
        if capacity <= 0:
            raise ValueError("capacity must be greater than 0")
        self._capacity = capacity
        self._buffer: deque[ProgressEvent] = deque()
        self._closed = False
        self._changed = asyncio.Condition()

    @property
    def closed(self) -> bool:
        return self._closed

    async def publish(self, event: ProgressEvent) -> None:
        async with self._changed:
            await self._changed.wait_for(
                lambda: self._closed or len(self._buffer) < self._capacity
            )
            if self._closed:
                raise ChannelClosedError("progress channel is closed")
            self._buffer.append(event)
            self._changed.notify_all()

    async def close(self) -> None:
        async with self._changed:
            self._closed = True
            self._changed.notify_all()

    def __aiter__(self) -> "ProgressChannel":
        return self

    async def __anext__(self) -> ProgressEvent:
        async with self._changed:
            await self._changed.wait_for(lambda: bool(self._buffer) or self._closed)
            if not self._buffer:
                raise StopAsyncIteration
            event = self._buffer.popleft()
            self._changed.notify_all()
            return event


def encode_sse(payload: Mapping[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def encode_event(event: ProgressEvent) -> str:
    return encode_sse(event.to_payload())
