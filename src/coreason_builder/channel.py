# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_builder

import asyncio
from collections.abc import AsyncIterator

from loguru import logger

from coreason_builder.models.solve import SolveStatus

_CLOSED = object()


class TraceChannel:
    """FIFO hand-off of solve events from the decoder to the renderer.

    Single writer, single reader. ``send`` never blocks: once ``capacity``
    events are waiting, further events are dropped. ``close`` always
    delivers the end marker, even when the channel is full.
    """

    def __init__(self, capacity: int = 1024):
        if capacity < 1:
            raise ValueError("Trace channel capacity must be positive")
        self.capacity = capacity
        self.dropped = 0
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, event: SolveStatus) -> bool:
        """Queue an event. Returns False if it was dropped."""
        if self._closed:
            raise RuntimeError("Send on closed trace channel")
        if self._queue.qsize() >= self.capacity:
            self.dropped += 1
            logger.debug(f"Trace channel full, dropping solve event ({self.dropped} dropped so far)")
            return False
        self._queue.put_nowait(event)
        return True

    def close(self) -> None:
        if self._closed:
            raise RuntimeError("Trace channel already closed")
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    async def __aiter__(self) -> AsyncIterator[SolveStatus]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            assert isinstance(item, SolveStatus)
            yield item
