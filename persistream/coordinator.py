"""Stream lifecycle coordinator.

Claims a pending stream, drives its producer in a background task,
relays every fragment to the live channel immediately and batches the
same fragments into ledger chunks at sentence boundaries, then records
exactly one terminal status.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from persistream.errors import OwnershipConflict, ProducerFailure, StreamTimeout
from persistream.events import EventType, StreamEventEmitter
from persistream.persistence.ledger import StreamLedger
from persistream.schemas.stream import StreamStatus
from persistream.transport import LiveChannel

logger = logging.getLogger(__name__)

ChunkAppender = Callable[[str], Awaitable[None]]
Producer = Callable[[str, ChunkAppender], Awaitable[None]]

# Sentence-ending punctuation that triggers a ledger flush
_DELIMITERS = (".", "!", "?")


def has_delimiter(text: str) -> bool:
    """Return True if the fragment contains sentence-ending punctuation."""
    return any(d in text for d in _DELIMITERS)


@dataclass
class StreamHandle:
    """The live side of a begun stream.

    ``readable`` is handed to the transport as soon as the stream is
    claimed. ``task`` completes when production finishes; awaiting
    ``wait()`` is optional.
    """

    stream_id: str
    readable: LiveChannel
    task: asyncio.Task[None] = field(repr=False)

    async def wait(self) -> None:
        """Wait for production to finish, re-raising its failure."""
        await asyncio.shield(self.task)


class StreamCoordinator:
    """Drives producers for streams recorded in a StreamLedger.

    Constructed explicitly with the ledger it writes to. Production runs
    in tasks owned by the coordinator so it outlives the request that
    started it; call aclose() on shutdown.
    """

    def __init__(
        self,
        ledger: StreamLedger,
        *,
        emitter: StreamEventEmitter | None = None,
        timeout: float | None = None,
    ) -> None:
        self._ledger = ledger
        self._emitter = emitter
        self._timeout = timeout or None
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def ledger(self) -> StreamLedger:
        """The ledger this coordinator writes to."""
        return self._ledger

    @property
    def active_count(self) -> int:
        """Number of producer tasks still running."""
        return len(self._tasks)

    async def begin_stream(self, stream_id: str, producer: Producer) -> StreamHandle:
        """Claim a pending stream and start producing it.

        Returns as soon as the claim succeeds; production continues in
        the background and writes arrive on ``handle.readable``.

        Raises:
            StreamNotFound: If the stream does not exist.
            OwnershipConflict: If the stream is not pending or another
                caller won the claim. Nothing is written in that case.
        """
        status = await self._ledger.get_status(stream_id)
        if status is not StreamStatus.PENDING or not await self._ledger.claim(stream_id):
            if status is StreamStatus.PENDING:
                status = await self._ledger.get_status(stream_id)
            logger.warning("Stream %s was already started (%s)", stream_id, status)
            await self._emit(EventType.STREAM_CONFLICT, stream_id=stream_id, status=status)
            raise OwnershipConflict(stream_id, status)

        await self._emit(EventType.STREAM_CLAIMED, stream_id=stream_id)
        channel = LiveChannel(stream_id)
        task = asyncio.create_task(
            self._produce(stream_id, producer, channel),
            name=f"persistream-{stream_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return StreamHandle(stream_id=stream_id, readable=channel, task=task)

    async def join(self) -> None:
        """Wait for every outstanding producer task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel outstanding production and wait for it to settle."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _produce(
        self, stream_id: str, producer: Producer, channel: LiveChannel
    ) -> None:
        pending = ""
        flushed = 0

        async def flush() -> None:
            nonlocal pending, flushed
            await self._ledger.append_chunk(stream_id, pending)
            flushed += 1
            await self._emit(
                EventType.CHUNK_FLUSHED, stream_id=stream_id, length=len(pending)
            )
            pending = ""

        async def append(text: str) -> None:
            nonlocal pending
            await channel.write(text)
            pending += text
            if has_delimiter(text):
                await flush()

        deadline = asyncio.timeout(self._timeout)
        try:
            async with deadline:
                await producer(stream_id, append)
            if pending:
                await flush()
            await channel.close()
            await self._ledger.finish(stream_id, StreamStatus.DONE)
        except asyncio.CancelledError:
            await self._abort(
                stream_id, channel, StreamStatus.ERROR, RuntimeError("production cancelled")
            )
            raise
        except Exception as e:
            if isinstance(e, TimeoutError) and deadline.expired():
                await self._abort(stream_id, channel, StreamStatus.TIMEOUT, e)
                await self._emit(EventType.STREAM_TIMED_OUT, stream_id=stream_id)
                raise StreamTimeout(stream_id, f"Stream {stream_id} timed out") from e
            await self._abort(stream_id, channel, StreamStatus.ERROR, e)
            await self._emit(EventType.STREAM_FAILED, stream_id=stream_id, error=str(e))
            raise ProducerFailure(
                stream_id, f"Producer for stream {stream_id} failed: {e}"
            ) from e

        status = await self._ledger.get_status(stream_id)
        logger.info("Stream %s finished as %s (%d chunks)", stream_id, status, flushed)
        await self._emit(
            EventType.STREAM_COMPLETED, stream_id=stream_id, status=status, chunks=flushed
        )

    async def _abort(
        self,
        stream_id: str,
        channel: LiveChannel,
        status: StreamStatus,
        error: BaseException,
    ) -> None:
        """Record a terminal failure status and break the live channel."""
        try:
            await self._ledger.finish(stream_id, status)
        finally:
            await channel.close(error=error)

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("%s", exc)

    async def _emit(self, event_type: EventType, **data: object) -> None:
        if self._emitter is not None:
            await self._emitter.emit(event_type, **data)
