from __future__ import annotations

import asyncio

import pytest

from deepresearch.models.events import EventType
from deepresearch.services import streaming
from deepresearch.services.event_sink import EventSink, SinkClosedError


def finish_event():
    return streaming.finish("report", elapsed=1.23456, iterations=1, status="completed")


@pytest.mark.asyncio
async def test_events_are_delivered_in_order_and_stop_at_finish():
    sink = EventSink(8)
    await sink.emit(streaming.progress_init(5))
    await sink.emit(streaming.text_delta("a"))
    await sink.emit(streaming.text_delta("b"))
    await sink.emit(finish_event())

    received = [event async for event in sink]

    assert [e.event for e in received] == [
        EventType.PROGRESS_INIT,
        EventType.TEXT_DELTA,
        EventType.TEXT_DELTA,
        EventType.FINISH,
    ]
    assert sink.finished
    assert sink.emitted == 4


@pytest.mark.asyncio
async def test_emit_after_finish_is_rejected():
    sink = EventSink(4)
    await sink.emit(finish_event())
    with pytest.raises(SinkClosedError):
        await sink.emit(streaming.text_delta("late"))


@pytest.mark.asyncio
async def test_full_queue_suspends_producer():
    sink = EventSink(1)
    await sink.emit(streaming.text_delta("first"))

    blocked = asyncio.create_task(sink.emit(streaming.text_delta("second")))
    await asyncio.sleep(0.01)
    assert not blocked.done()
    assert sink.qsize() == 1

    consumer = sink.__aiter__()
    first = await consumer.__anext__()
    await asyncio.wait_for(blocked, timeout=1.0)
    second = await consumer.__anext__()

    assert [first.data, second.data] == [{"fragment": "first"}, {"fragment": "second"}]


def test_finish_payload_shape():
    event = finish_event()
    assert event.is_terminal
    assert event.data == {
        "report": "report",
        "elapsed": 1.235,
        "iterations": 1,
        "sourceCount": 0,
        "status": "completed",
        "sources": [],
    }
    assert event.format().startswith("event: finish\ndata: {")


def test_maxsize_has_a_floor():
    assert EventSink(0).maxsize == 1
