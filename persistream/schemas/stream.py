"""Stream and chunk schemas shared by the server and the client engine.

Defines the status lifecycle of a stream, the persisted body returned to
viewers, and the request/response bodies of the HTTP surface.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class StreamStatus(StrEnum):
    """Lifecycle status of a stream.

    pending -> streaming -> exactly one of done / error / timeout.
    """

    PENDING = "pending"
    STREAMING = "streaming"
    DONE = "done"
    ERROR = "error"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        """Whether the status can no longer change."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: frozenset[StreamStatus] = frozenset({
    StreamStatus.DONE,
    StreamStatus.ERROR,
    StreamStatus.TIMEOUT,
})

# Statuses during which a driven session still shows "generating" affordances
ACTIVE_STATUSES: frozenset[StreamStatus] = frozenset({
    StreamStatus.PENDING,
    StreamStatus.STREAMING,
})


class StreamBody(BaseModel):
    """The text and status of a stream as presented to a viewer."""

    text: str = Field(default="", description="Concatenated stream text")
    status: StreamStatus = Field(
        default=StreamStatus.PENDING, description="Current stream status"
    )


class ChunkRecord(BaseModel):
    """A single persisted fragment of a stream's text."""

    id: int = Field(ge=1, description="Insertion-order key")
    stream_id: str
    text: str


class StreamRecord(BaseModel):
    """Stream metadata as stored in the ledger."""

    stream_id: str = Field(description="Opaque unique stream identifier")
    status: StreamStatus
    prompt: str = Field(default="", description="Input the producer generates from")
    created_at: datetime
    updated_at: datetime
    chunk_count: int = Field(default=0, ge=0)


class CreateStreamRequest(BaseModel):
    """Body of POST /streams."""

    prompt: str = ""


class CreateStreamResponse(BaseModel):
    """Response of POST /streams."""

    stream_id: str


class BeginStreamRequest(BaseModel):
    """Body of the begin/drive request.

    Accepts the wire name ``streamId`` as well as ``stream_id``.
    """

    model_config = ConfigDict(populate_by_name=True)

    stream_id: str = Field(alias="streamId", min_length=1)


class ClearResponse(BaseModel):
    """Response of the bulk clear operation."""

    deleted: int = Field(ge=0)
