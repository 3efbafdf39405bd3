"""Stream ledger: the durable record of every stream and its chunks.

Provides the StreamLedger class that wraps low-level database operations
with Pydantic schema serialization. Chunks are an append-only log; a
stream's persisted body is the concatenation of its chunks in insertion
order. Status writes made by the coordinator go through conditional
updates so a terminal status is never overwritten.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import aiosqlite

from persistream.errors import StreamNotFound
from persistream.schemas.stream import (
    TERMINAL_STATUSES,
    ChunkRecord,
    StreamBody,
    StreamRecord,
    StreamStatus,
)

logger = logging.getLogger(__name__)

_ACTIVE_SQL = "('pending', 'streaming')"


def _now() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds")


class StreamLedger:
    """Persistent stream store backed by SQLite.

    All methods are async and operate on an aiosqlite connection
    initialized by database.init_db(). Every mutating method commits
    before returning.
    """

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db
        self._db.row_factory = aiosqlite.Row

    async def create(self, prompt: str = "") -> str:
        """Create a new pending stream and return its id."""
        stream_id = uuid4().hex
        now = _now()
        await self._db.execute(
            """
            INSERT INTO streams (stream_id, status, prompt, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (stream_id, StreamStatus.PENDING.value, prompt, now, now),
        )
        await self._db.commit()
        logger.info("Created stream %s", stream_id)
        return stream_id

    async def append_chunk(self, stream_id: str, text: str) -> None:
        """Append one chunk to a stream without touching its status.

        Not idempotent: a successful append must not be retried.

        Raises:
            StreamNotFound: If the stream does not exist (e.g. it was
                cleared while production was still running).
        """
        try:
            await self._db.execute(
                "INSERT INTO chunks (stream_id, text) VALUES (?, ?)",
                (stream_id, text),
            )
        except aiosqlite.IntegrityError:
            raise StreamNotFound(stream_id) from None
        await self._db.execute(
            "UPDATE streams SET updated_at = ? WHERE stream_id = ?",
            (_now(), stream_id),
        )
        await self._db.commit()

    async def set_status(self, stream_id: str, status: StreamStatus) -> None:
        """Unconditionally set a stream's status.

        Raises:
            StreamNotFound: If the stream does not exist.
        """
        cursor = await self._db.execute(
            "UPDATE streams SET status = ?, updated_at = ? WHERE stream_id = ?",
            (StreamStatus(status).value, _now(), stream_id),
        )
        await self._db.commit()
        if cursor.rowcount == 0:
            raise StreamNotFound(stream_id)

    async def get_status(self, stream_id: str) -> StreamStatus:
        """Return the current status of a stream.

        Raises:
            StreamNotFound: If the stream does not exist.
        """
        async with self._db.execute(
            "SELECT status FROM streams WHERE stream_id = ?",
            (stream_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise StreamNotFound(stream_id)
        return StreamStatus(row["status"])

    async def get_body(self, stream_id: str) -> StreamBody:
        """Return the persisted text and status of a stream.

        Raises:
            StreamNotFound: If the stream does not exist.
        """
        status = await self.get_status(stream_id)
        async with self._db.execute(
            "SELECT text FROM chunks WHERE stream_id = ? ORDER BY id",
            (stream_id,),
        ) as cursor:
            parts = [row["text"] async for row in cursor]
        return StreamBody(text="".join(parts), status=status)

    async def get_chunks(self, stream_id: str) -> list[ChunkRecord]:
        """Return the chunks of a stream in insertion order."""
        await self.get_status(stream_id)
        async with self._db.execute(
            "SELECT id, stream_id, text FROM chunks WHERE stream_id = ? ORDER BY id",
            (stream_id,),
        ) as cursor:
            return [
                ChunkRecord(id=row["id"], stream_id=row["stream_id"], text=row["text"])
                async for row in cursor
            ]

    async def claim(self, stream_id: str) -> bool:
        """Atomically move a stream from pending to streaming.

        Returns True only for the single caller whose update matched a
        pending row; every concurrent or later caller gets False and no
        row is written.
        """
        cursor = await self._db.execute(
            """
            UPDATE streams SET status = ?, updated_at = ?
            WHERE stream_id = ? AND status = ?
            """,
            (
                StreamStatus.STREAMING.value,
                _now(),
                stream_id,
                StreamStatus.PENDING.value,
            ),
        )
        await self._db.commit()
        claimed = cursor.rowcount == 1
        if claimed:
            logger.info("Claimed stream %s", stream_id)
        return claimed

    async def finish(self, stream_id: str, status: StreamStatus) -> bool:
        """Move a stream into a terminal status unless it already has one.

        Returns True if the status was written, False if the stream was
        already terminal.

        Raises:
            ValueError: If status is not terminal.
        """
        status = StreamStatus(status)
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"finish() requires a terminal status, got {status}")
        cursor = await self._db.execute(
            f"""
            UPDATE streams SET status = ?, updated_at = ?
            WHERE stream_id = ? AND status IN {_ACTIVE_SQL}
            """,  # noqa: S608
            (status.value, _now(), stream_id),
        )
        await self._db.commit()
        return cursor.rowcount == 1

    async def expire_stale(self, older_than_seconds: float) -> list[str]:
        """Time out streaming streams with no writes since the cutoff.

        Returns the ids of the streams that were marked ``timeout``.
        """
        cutoff = (
            datetime.now(UTC) - timedelta(seconds=older_than_seconds)
        ).isoformat(timespec="microseconds")
        async with self._db.execute(
            "SELECT stream_id FROM streams WHERE status = ? AND updated_at < ?",
            (StreamStatus.STREAMING.value, cutoff),
        ) as cursor:
            stale = [row["stream_id"] async for row in cursor]

        expired: list[str] = []
        for stream_id in stale:
            cursor = await self._db.execute(
                """
                UPDATE streams SET status = ?, updated_at = ?
                WHERE stream_id = ? AND status = ? AND updated_at < ?
                """,
                (
                    StreamStatus.TIMEOUT.value,
                    _now(),
                    stream_id,
                    StreamStatus.STREAMING.value,
                    cutoff,
                ),
            )
            if cursor.rowcount == 1:
                expired.append(stream_id)
        await self._db.commit()

        if expired:
            logger.warning("Timed out %d stalled stream(s)", len(expired))
        return expired

    async def get_stream(self, stream_id: str) -> StreamRecord:
        """Return stream metadata.

        Raises:
            StreamNotFound: If the stream does not exist.
        """
        async with self._db.execute(
            """
            SELECT s.*, (SELECT COUNT(*) FROM chunks c
                         WHERE c.stream_id = s.stream_id) AS chunk_count
            FROM streams s WHERE s.stream_id = ?
            """,
            (stream_id,),
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise StreamNotFound(stream_id)
        return self._row_to_record(row)

    async def list_streams(
        self,
        limit: int = 50,
        status: StreamStatus | None = None,
    ) -> list[StreamRecord]:
        """List streams, most recently created first."""
        where = "WHERE s.status = ?" if status else ""
        params: list[object] = [StreamStatus(status).value] if status else []
        params.append(limit)
        sql = f"""
            SELECT s.*, (SELECT COUNT(*) FROM chunks c
                         WHERE c.stream_id = s.stream_id) AS chunk_count
            FROM streams s
            {where}
            ORDER BY s.created_at DESC, s.rowid DESC
            LIMIT ?
        """  # noqa: S608
        async with self._db.execute(sql, params) as cursor:
            return [self._row_to_record(row) async for row in cursor]

    async def delete_stream(self, stream_id: str) -> bool:
        """Delete a stream and its chunks. Returns False if it didn't exist."""
        cursor = await self._db.execute(
            "DELETE FROM streams WHERE stream_id = ?",
            (stream_id,),
        )
        await self._db.commit()
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted stream %s", stream_id)
        return deleted

    async def clear(self) -> int:
        """Delete every stream and chunk. Returns the number of streams removed."""
        await self._db.execute("DELETE FROM chunks")
        cursor = await self._db.execute("DELETE FROM streams")
        await self._db.commit()
        logger.info("Cleared %d stream(s)", cursor.rowcount)
        return cursor.rowcount

    @staticmethod
    def _row_to_record(row: aiosqlite.Row) -> StreamRecord:
        return StreamRecord(
            stream_id=row["stream_id"],
            status=StreamStatus(row["status"]),
            prompt=row["prompt"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            chunk_count=row["chunk_count"],
        )
