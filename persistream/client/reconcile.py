"""Source selection between the live transport and the persisted ledger.

Pure functions, independent of any transport or store, that decide per
render which source a subscription presents and synthesize a status for
the live source.
"""

from __future__ import annotations

from enum import StrEnum

from persistream.schemas.stream import StreamBody, StreamStatus


class CompletionFlag(StrEnum):
    """Outcome of a subscription's own live read."""

    UNKNOWN = "unknown"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def uses_persisted(driven: bool, completion: CompletionFlag) -> bool:
    """Whether the persisted ledger body is the authoritative source.

    Sessions that are not driving the stream always observe the durable
    record. The driving session does too once its live read has failed.
    """
    return not driven or completion is CompletionFlag.FAILED


def synthesize_status(completion: CompletionFlag, local_text: str) -> StreamStatus:
    """Derive a status for the live source from the local read state."""
    if completion is CompletionFlag.SUCCEEDED:
        return StreamStatus.DONE
    if completion is CompletionFlag.FAILED:
        return StreamStatus.ERROR
    return StreamStatus.STREAMING if local_text else StreamStatus.PENDING


def reconcile(
    driven: bool,
    completion: CompletionFlag,
    local_text: str,
    persisted: StreamBody | None,
) -> StreamBody:
    """Return the (text, status) a subscription should present.

    Args:
        driven: True only for the session that created and began the stream.
        completion: Outcome of the live read so far.
        local_text: Text accumulated from the live transport.
        persisted: Latest persisted body, or None if not loaded yet.

    Returns:
        The ledger's body verbatim when persisted data is selected and
        available; otherwise the local text with a synthesized status.
    """
    if uses_persisted(driven, completion) and persisted is not None:
        return StreamBody(text=persisted.text, status=persisted.status)
    return StreamBody(
        text=local_text,
        status=synthesize_status(completion, local_text),
    )
