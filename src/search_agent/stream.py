"""Outbound event stream: frame encoding, bounded sink, word pacing."""

from __future__ import annotations

import asyncio
import json
import re
from collections.abc import AsyncIterator
from typing import Protocol

from search_agent.errors import StreamClosedError
from search_agent.types import StreamEvent

_WORD = re.compile(r"\S+\s+")


class StreamSink(Protocol):
    async def write(self, event: StreamEvent) -> None: ...


def encode_frame(event: StreamEvent) -> str:
    """Serialize one event as a newline-terminated JSON frame."""
    return json.dumps(event.to_frame(), ensure_ascii=False, default=str) + "\n"


class QueueSink:
    """Bounded, backpressure-aware sink drained by the HTTP response.

    `write` waits while the buffer is full and raises `StreamClosedError` once
    the sink is closed. `frames` yields encoded frames until the producer
    closes the sink and the buffer is drained.
    """

    def __init__(self, maxsize: int = 64) -> None:
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def write(self, event: StreamEvent) -> None:
        if self._closed:
            raise StreamClosedError("stream is closed")
        frame = encode_frame(event)
        await self._queue.put(frame)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(None)
        except asyncio.QueueFull:
            # The reader is not blocked on an empty queue; it exits after draining.
            pass

    async def frames(self) -> AsyncIterator[str]:
        while True:
            if self._closed and self._queue.empty():
                return
            frame = await self._queue.get()
            if frame is None:
                return
            yield frame


async def pace_words(
    chunks: AsyncIterator[str], *, delay_seconds: float = 0.0
) -> AsyncIterator[str]:
    """Re-chunk a text stream into words with a fixed delay between them."""
    buffer = ""
    async for chunk in chunks:
        buffer += chunk
        while True:
            match = _WORD.search(buffer)
            if match is None:
                break
            yield buffer[: match.end()]
            buffer = buffer[match.end():]
            if delay_seconds > 0:
                await asyncio.sleep(delay_seconds)
    if buffer:
        yield buffer
