"""One-way event channel between an analysis run and its observer.

The orchestrator is the only producer; a transport (SSE response, CLI printer,
test) is the only consumer and iterates with ``async for``. Events arrive in
emission order. The channel is closed exactly once, right after the first
terminal event. A consumer that goes away calls :meth:`ProgressChannel.detach`
and every later event is dropped.

Emitting never waits on the consumer. Once ``maxsize`` events are pending,
further progress events are dropped; the terminal event and the end-of-stream
marker are always queued.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from classtally.schemas import AnalysisEvent


logger = logging.getLogger(__name__)

_CLOSED = object()


class ChannelClosedError(RuntimeError):
    """Raised when emitting on, or closing, a channel that is already closed."""


class ProgressChannel:
    """Bounded async channel carrying the events of one analysis run."""

    def __init__(self, maxsize: int = 256):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._maxsize = maxsize
        self._terminated = False
        self._closed = False
        self._detached = False
        self.dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def terminated(self) -> bool:
        """True once a terminal (completed/error) event has been emitted."""
        return self._terminated

    @property
    def detached(self) -> bool:
        return self._detached

    async def emit(self, event: AnalysisEvent) -> None:
        """Append an event without waiting for the consumer."""
        if self._closed or self._terminated:
            raise ChannelClosedError(
                f"Cannot emit '{event.type}' after the run has finished"
            )
        if event.is_terminal:
            self._terminated = True
        if self._detached:
            logger.debug(f"Dropping '{event.type}' event for detached observer")
            return
        if not event.is_terminal and self._queue.qsize() >= self._maxsize:
            self.dropped += 1
            logger.debug(f"Dropping '{event.type}' event, observer is {self._maxsize} events behind")
            return
        self._queue.put_nowait(event)

    async def close(self) -> None:
        """Close the channel; consumers stop after draining queued events."""
        if self._closed:
            raise ChannelClosedError("Channel already closed")
        self._closed = True
        if not self._detached:
            self._queue.put_nowait(_CLOSED)

    def detach(self) -> None:
        """Observer disconnected: discard queued events and drop future ones."""
        self._detached = True
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break

    async def __aiter__(self) -> AsyncIterator[AnalysisEvent]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item
