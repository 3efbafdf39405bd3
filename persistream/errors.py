"""Exception hierarchy for persistent text streaming.

Ownership conflicts and transport failures are recoverable by falling back
to the persisted ledger body. Producer failures and timeouts are terminal
for the stream but leave the flushed text readable.
"""

from __future__ import annotations


class StreamingError(Exception):
    """Base exception for all persistream errors."""


class StreamNotFound(StreamingError, KeyError):
    """Raised when a stream id does not exist in the ledger."""

    def __init__(self, stream_id: str) -> None:
        super().__init__(stream_id)
        self.stream_id = stream_id

    def __str__(self) -> str:
        return f"Stream not found: {self.stream_id}"


class OwnershipConflict(StreamingError):
    """Raised when a stream is begun while not pending.

    The stream is already being driven (or has finished). Callers should
    present the persisted body instead of a live one.
    """

    def __init__(self, stream_id: str, status: str) -> None:
        super().__init__(f"Stream {stream_id} is already {status}")
        self.stream_id = stream_id
        self.status = status


class ProducerFailure(StreamingError):
    """Raised when the generation callback fails mid-stream."""

    def __init__(self, stream_id: str, message: str) -> None:
        super().__init__(message)
        self.stream_id = stream_id


class StreamTimeout(ProducerFailure):
    """Raised when production exceeds the coordinator's timeout."""


class TransportFailure(StreamingError):
    """Raised on the reading side of a live channel that broke."""
