"""
ewstransport Progress Channel

Single-consumer channel carrying the progress events of one stream.

The producer is a task pumping the HTTP response into the channel; the
consumer iterates the channel. Closing the channel cancels the producer,
which is how disconnect() tears a stream down.

INVARIANT: nothing is published after a terminal (END / ERROR) event
INVARIANT: iteration stops after a terminal event or after close()
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import attrs
import structlog

from ewstransport.core.types import ProgressEvent, is_terminal

logger = structlog.get_logger()


_CLOSED = object()


@attrs.define
class ProgressChannel:
    """
    Finite, non-restartable sequence of ProgressEvent values.

    Example:
        channel = ProgressChannel()
        channel.attach(asyncio.create_task(pump(response, channel)))
        async for event in channel:
            ...
    """

    _queue: asyncio.Queue = attrs.Factory(asyncio.Queue)
    _producer: Optional[asyncio.Task] = None
    _terminated: bool = False
    _closed: bool = False
    _drained: bool = False
    _logger: Any = attrs.Factory(lambda: structlog.get_logger())

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def terminated(self) -> bool:
        """True once a terminal event has been published."""
        return self._terminated

    def attach(self, producer: asyncio.Task) -> None:
        """Register the task that feeds this channel."""
        self._producer = producer
        if self._closed:
            producer.cancel()

    def publish(self, event: ProgressEvent) -> bool:
        """
        Queue an event for the consumer.

        Returns:
            False when the event was dropped (channel closed or terminated)
        """
        if self._closed or self._terminated:
            return False
        if is_terminal(event):
            self._terminated = True
        self._queue.put_nowait(event)
        return True

    def close(self) -> None:
        """Close the producer side. Events already queued are still delivered."""
        if self._closed:
            return
        self._closed = True
        if self._producer is not None and not self._producer.done():
            self._producer.cancel()
        self._queue.put_nowait(_CLOSED)
        self._logger.debug("progress_channel_closed", terminated=self._terminated)

    def __aiter__(self) -> "ProgressChannel":
        return self

    async def __anext__(self) -> ProgressEvent:
        if self._drained:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self._drained = True
            raise StopAsyncIteration
        if is_terminal(item):
            self._drained = True
        return item
