"""Pydantic schemas for streams, chunks and configuration."""

from persistream.schemas.config import StreamingConfig
from persistream.schemas.stream import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    BeginStreamRequest,
    ChunkRecord,
    ClearResponse,
    CreateStreamRequest,
    CreateStreamResponse,
    StreamBody,
    StreamRecord,
    StreamStatus,
)

__all__ = [
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
    "BeginStreamRequest",
    "ChunkRecord",
    "ClearResponse",
    "CreateStreamRequest",
    "CreateStreamResponse",
    "StreamBody",
    "StreamRecord",
    "StreamStatus",
    "StreamingConfig",
]
