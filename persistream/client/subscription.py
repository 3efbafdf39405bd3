"""Per-viewer stream subscription.

A StreamSubscription merges the live transport (when this session is
the driver) with reads of the persisted ledger body into a single
``(text, status)`` view, and notifies the host when that view changes.

Usage:
    sub = StreamSubscription(
        driven=True,
        stream_id=stream_id,
        stream_url="http://localhost:8420/stream",
        body_source=HttpBodySource(client, "http://localhost:8420"),
        client=client,
    )
    sub.emitter.add_listener(on_event)
    await sub.start()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

import httpx

from persistream.client.fetch import fetch_persisted_body, start_streaming
from persistream.client.reconcile import CompletionFlag, reconcile, uses_persisted
from persistream.events import EventType, StreamEventEmitter
from persistream.schemas.stream import ACTIVE_STATUSES, StreamBody

logger = logging.getLogger(__name__)

BodySource = Callable[[str], Awaitable[StreamBody]]


class HttpBodySource:
    """Reads persisted bodies from a server's ``/streams/{id}`` endpoint."""

    def __init__(self, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    async def __call__(self, stream_id: str) -> StreamBody:
        return await fetch_persisted_body(
            self._client, f"{self._base_url}/streams/{stream_id}"
        )


class StreamSubscription:
    """Reconciles live and persisted text for one viewing session.

    Only the driven session (the one that created the stream and now
    begins it) reads the live transport, at most once. Every other
    session, and the driver after a failed live read, presents the
    persisted body supplied through update_persisted() or a body source.
    """

    def __init__(
        self,
        *,
        driven: bool,
        stream_id: str | None = None,
        stream_url: str | None = None,
        body_source: BodySource | None = None,
        client: httpx.AsyncClient | None = None,
        emitter: StreamEventEmitter | None = None,
    ) -> None:
        self.driven = driven
        self.stream_id = stream_id
        self._stream_url = stream_url
        self._body_source = body_source
        self._client = client
        self.emitter = emitter or StreamEventEmitter()

        self._local_text = ""
        self._completion = CompletionFlag.UNKNOWN
        self._fetch_attempted = False
        self._persisted: StreamBody | None = None
        self._last_text = ""
        self._settled = False
        self._task: asyncio.Task[None] | None = None

    # ── State ────────────────────────────────────────────────────

    @property
    def completion(self) -> CompletionFlag:
        """Outcome of this session's live read."""
        return self._completion

    @property
    def fetch_attempted(self) -> bool:
        """Whether the live fetch has been started."""
        return self._fetch_attempted

    @property
    def uses_persisted(self) -> bool:
        """Whether the persisted body is the authoritative source."""
        return uses_persisted(self.driven, self._completion)

    @property
    def body(self) -> StreamBody:
        """The text and status to present right now."""
        return reconcile(self.driven, self._completion, self._local_text, self._persisted)

    # ── Live source ──────────────────────────────────────────────

    async def start(self) -> None:
        """Run the live fetch once, if this session drives the stream.

        Does nothing for non-driven sessions, without a stream id, or when
        the fetch was already attempted.
        """
        if not (self.driven and self.stream_id) or self._fetch_attempted:
            return
        if self._client is None or self._stream_url is None:
            raise ValueError("A driven subscription needs a client and a stream_url")
        self._fetch_attempted = True

        succeeded = await start_streaming(
            self._client, self._stream_url, self.stream_id, self._on_live_text
        )
        self._completion = CompletionFlag.SUCCEEDED if succeeded else CompletionFlag.FAILED
        if not succeeded:
            logger.info(
                "Falling back to persisted body for stream %s", self.stream_id
            )
        await self._notify()

    def ensure_started(self) -> asyncio.Task[None] | None:
        """Start the live fetch in the background if it should run."""
        if self._task is None and self.driven and self.stream_id and not self._fetch_attempted:
            self._task = asyncio.get_running_loop().create_task(self.start())
        return self._task

    async def _on_live_text(self, text: str) -> None:
        self._local_text += text
        await self._notify()

    # ── Persisted source ─────────────────────────────────────────

    async def update_persisted(self, body: StreamBody | None) -> None:
        """Record the latest persisted body from a reactive store read."""
        self._persisted = body
        await self._notify()

    async def refresh(self) -> StreamBody:
        """Pull the persisted body if it is the selected source."""
        if self.uses_persisted and self.stream_id and self._body_source is not None:
            await self.update_persisted(await self._body_source(self.stream_id))
        return self.body

    async def poll(self, interval: float = 0.5) -> StreamBody:
        """Refresh until the presented status is terminal.

        Returns the final presented body.
        """
        while True:
            body = await self.refresh()
            if body.status.is_terminal:
                return body
            await asyncio.sleep(interval)

    # ── Notifications ────────────────────────────────────────────

    async def _notify(self) -> None:
        body = self.body
        if body.text != self._last_text:
            self._last_text = body.text
            await self.emitter.emit(
                EventType.TEXT_CHANGED, stream_id=self.stream_id, text=body.text
            )
        if self.driven and not self._settled and body.status not in ACTIVE_STATUSES:
            self._settled = True
            await self.emitter.emit(
                EventType.STREAM_SETTLED, stream_id=self.stream_id, status=body.status
            )
