"""Live transport channel between a producer invocation and one reader.

A LiveChannel is the in-process equivalent of a readable/writable stream
pair: the coordinator writes text to it as fragments are produced, and
the HTTP layer iterates it to relay bytes to the driving session. Each
channel carries exactly one stream and is closed exactly once.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from persistream.errors import TransportFailure

logger = logging.getLogger(__name__)

# Queue marker for end-of-stream
_EOF = object()


class LiveChannel:
    """One-shot, unidirectional byte channel.

    Writes are encoded as UTF-8 and buffered without limit, so a slow or
    absent reader never blocks the producer. Iterating the channel yields
    the written bytes in order until it is closed. A channel closed with
    an error makes the reader raise TransportFailure once the bytes
    written before the error have been drained.
    """

    def __init__(self, stream_id: str = "") -> None:
        self.stream_id = stream_id
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False
        self._detached = False
        self._error: BaseException | None = None
        self._iterating = False

    @property
    def closed(self) -> bool:
        """Whether the writable end has been closed."""
        return self._closed

    @property
    def detached(self) -> bool:
        """Whether the reader has gone away."""
        return self._detached

    async def write(self, text: str) -> None:
        """Write a text fragment to the channel.

        Raises:
            TransportFailure: If the channel is already closed.
        """
        if self._closed:
            raise TransportFailure(f"Channel for stream {self.stream_id} is closed")
        if self._detached or not text:
            return
        self._queue.put_nowait(text.encode("utf-8"))

    async def close(self, error: BaseException | None = None) -> None:
        """Close the writable end, optionally marking the stream as broken.

        Closing twice is a no-op.
        """
        if self._closed:
            return
        self._closed = True
        self._error = error
        self._queue.put_nowait(_EOF)

    def detach(self) -> None:
        """Drop the reader; later writes are discarded."""
        if not self._detached:
            self._detached = True
            logger.info("Reader detached from stream %s", self.stream_id)
            while not self._queue.empty():
                self._queue.get_nowait()
            if self._closed:
                self._queue.put_nowait(_EOF)

    def __aiter__(self) -> AsyncIterator[bytes]:
        if self._iterating:
            raise TransportFailure("A live channel can only be read once")
        self._iterating = True
        return self._read()

    async def _read(self) -> AsyncIterator[bytes]:
        while True:
            item = await self._queue.get()
            if item is _EOF:
                break
            yield item  # type: ignore[misc]
        if self._error is not None:
            raise TransportFailure(
                f"Stream {self.stream_id} failed: {self._error}"
            ) from self._error

    async def read_all(self) -> bytes:
        """Read the channel to completion and return every byte."""
        return b"".join([data async for data in self])
