"""Ordered, append-only progress channel between a plan run and its requester."""

from __future__ import annotations

import asyncio
import json
from typing import AsyncIterator

import structlog

from planrunner.domain.plans.errors import StreamClosedError
from planrunner.domain.plans.events import ProgressEvent


logger = structlog.get_logger(__name__)

_CLOSED = object()


def format_sse(event: ProgressEvent) -> str:
    """Encode one event as a Server-Sent Events frame."""
    return f"data: {json.dumps(event.to_dict())}\n\n"


class ProgressStream:
    """
    Single-consumer event channel backed by an unbounded asyncio queue.

    The producer never waits on the consumer: emit() enqueues and returns.
    Iteration yields events in emit order and ends once close() has been
    called and everything queued before it has been delivered.
    """

    def __init__(self, plan_id: str) -> None:
        self.plan_id = plan_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._emitted = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def emitted_count(self) -> int:
        return self._emitted

    def emit(self, event: ProgressEvent) -> None:
        if self._closed:
            raise StreamClosedError(
                f"Progress stream for plan {self.plan_id} is closed; dropped {event.event_type}"
            )
        self._queue.put_nowait(event)
        self._emitted += 1
        logger.debug("Progress event emitted", plan_id=self.plan_id, event_type=event.event_type)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def __aiter__(self) -> AsyncIterator[ProgressEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item

    async def sse(self) -> AsyncIterator[str]:
        async for event in self:
            yield format_sse(event)
