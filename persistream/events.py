"""Stream lifecycle event emitter.

Emits structured events as streams are created, claimed, flushed and
finalized on the server, and as a client subscription's presented text
changes or settles. Hosts register listeners to drive UI updates,
release input locks or log progress.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# Max events kept in history
_MAX_HISTORY = 1000


class EventType(StrEnum):
    """Types of stream events."""

    STREAM_CREATED = "stream_created"
    STREAM_CLAIMED = "stream_claimed"
    STREAM_CONFLICT = "stream_conflict"
    CHUNK_FLUSHED = "chunk_flushed"
    STREAM_COMPLETED = "stream_completed"
    STREAM_FAILED = "stream_failed"
    STREAM_TIMED_OUT = "stream_timed_out"
    STREAMS_CLEARED = "streams_cleared"
    TEXT_CHANGED = "text_changed"
    STREAM_SETTLED = "stream_settled"


class StreamEvent(BaseModel):
    """A single stream event."""

    type: EventType = Field(description="Event type")
    timestamp: float = Field(
        default_factory=time.time,
        description="Unix timestamp when the event occurred",
    )
    data: dict[str, Any] = Field(
        default_factory=dict,
        description="Event payload, varies by event type",
    )


# Type alias for event listener callbacks
EventListener = Callable[[StreamEvent], Any]


class StreamEventEmitter:
    """Broadcasts stream events to registered listeners.

    Listeners can be sync or async callables. Server and client use it
    differently:

    * Server side, one emitter is shared by the app and its
      ``StreamCoordinator`` and is optional. It reports ledger lifecycle
      events for every stream: created, claimed, conflict, chunk flushed,
      completed, failed, timed out and cleared.
    * Client side, each ``StreamSubscription`` owns its own emitter (one
      is created when none is passed in) and reports only what that
      viewer presents: ``TEXT_CHANGED`` when the reconciled text changes
      and, for the driving session only, a single ``STREAM_SETTLED`` once
      the presented status leaves pending/streaming.
    """

    def __init__(self, max_history: int = _MAX_HISTORY) -> None:
        self._listeners: list[EventListener] = []
        self._history: list[StreamEvent] = []
        self._max_history = max_history

    @property
    def history(self) -> list[StreamEvent]:
        """Most recent events, oldest first."""
        return list(self._history)

    def add_listener(self, listener: EventListener) -> None:
        """Register a listener to receive stream events."""
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        """Remove a previously registered listener."""
        self._listeners = [ln for ln in self._listeners if ln is not listener]

    async def emit(self, event_type: EventType, **data: Any) -> None:
        """Emit a stream event to all registered listeners.

        Sync listeners are called directly; async listeners are awaited.
        Listener exceptions are logged but never propagate.
        """
        event = StreamEvent(type=event_type, data=data)
        self._history.append(event)
        if len(self._history) > self._max_history:
            del self._history[: len(self._history) - self._max_history]

        for listener in self._listeners:
            try:
                result = listener(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Event listener error for %s", event_type)
