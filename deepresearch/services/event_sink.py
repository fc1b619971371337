"""Ordered, bounded event channel between one orchestrator and one observer."""
from __future__ import annotations

import asyncio
from typing import AsyncIterator

from deepresearch.models.events import SSEEvent


class SinkClosedError(RuntimeError):
    """Raised when emitting after the terminal event."""


class EventSink:
    """Single-producer/single-consumer queue with backpressure.

    `emit` suspends while the queue is full. Iteration ends right after the
    terminal event has been delivered.
    """

    def __init__(self, maxsize: int = 64) -> None:
        self._queue: asyncio.Queue[SSEEvent] = asyncio.Queue(maxsize=max(int(maxsize), 1))
        self._finished = False
        self.emitted = 0

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def maxsize(self) -> int:
        return self._queue.maxsize

    def qsize(self) -> int:
        return self._queue.qsize()

    async def emit(self, event: SSEEvent) -> None:
        if self._finished:
            raise SinkClosedError(f"cannot emit {event.event.value} after finish")
        if event.is_terminal:
            self._finished = True
        self.emitted += 1
        await self._queue.put(event)

    async def get(self) -> SSEEvent:
        return await self._queue.get()

    async def _drain(self) -> AsyncIterator[SSEEvent]:
        while True:
            event = await self._queue.get()
            yield event
            if event.is_terminal:
                return

    def __aiter__(self) -> AsyncIterator[SSEEvent]:
        return self._drain()
