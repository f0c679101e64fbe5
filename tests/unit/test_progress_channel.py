import asyncio

import pytest

from lesson_agent.domain.lesson.workflow_state import ProgressEvent, Stage
from lesson_agent.workflows.lesson.progress_channel import (
    ChannelClosedError,
    ProgressChannel,
    encode_event,
    encode_sse,
)


def _event(stage: Stage) -> ProgressEvent:
    return ProgressEvent(stage, {"homework": stage.value})


@pytest.mark.asyncio
async def test_events_are_delivered_in_publish_order():
    channel = ProgressChannel(capacity=8)
    for stage in Stage:
        await channel.publish(_event(stage))
    await channel.close()

    assert [event.stage async for event in channel] == list(Stage)


@pytest.mark.asyncio
async def test_publish_waits_for_space_when_full():
    channel = ProgressChannel(capacity=1)
    await channel.publish(_event(Stage.INPUT_ANALYSIS))
    blocked = asyncio.create_task(channel.publish(_event(Stage.KNOWLEDGE_QUERY)))
    await asyncio.sleep(0.01)

    assert not blocked.done()
    first = await channel.__anext__()
    await asyncio.wait_for(blocked, timeout=1)
    second = await channel.__anext__()
    assert (first.stage, second.stage) == (Stage.INPUT_ANALYSIS, Stage.KNOWLEDGE_QUERY)


def test_close_does_not_wait_for_space_and_drains_buffer():
    async def _scenario():
        channel = ProgressChannel(capacity=1)
        await channel.publish(_event(Stage.INPUT_ANALYSIS))
        await asyncio.wait_for(channel.close(), timeout=1)
        return channel.closed, [event.stage async for event in channel]

    closed, drained = asyncio.run(_scenario())

    assert closed is True
    assert drained == [Stage.INPUT_ANALYSIS]


def test_publish_after_close_raises():
    async def _scenario():
        channel = ProgressChannel(capacity=2)
        await channel.close()
        await channel.publish(_event(Stage.OUTPUT_FORMAT))

    with pytest.raises(ChannelClosedError):
        asyncio.run(_scenario())


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        ProgressChannel(capacity=0)


def test_sse_encoding_keeps_unicode():
    assert encode_sse({"error": "教学设计生成失败"}) == 'data: {"error": "教学设计生成失败"}\n\n'
    assert encode_event(ProgressEvent(Stage.OUTPUT_FORMAT, {"end_time": 7})) == (
        'data: {"node": "outputFormat", "state": {"endTime": 7}}\n\n'
    )
