"""FastAPI application exposing the stream ledger and the drive endpoint.

Endpoints:
- POST   /streams           create a pending stream
- GET    /streams           list stream records
- GET    /streams/{id}      persisted body {text, status}
- DELETE /streams/{id}      delete one stream
- DELETE /streams           clear every stream
- POST   /stream            begin/drive a stream; 205 if already started
- GET    /health            liveness probe

The drive endpoint hands back the live channel as a streamed response
while the coordinator keeps producing in the background.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from persistream import __version__
from persistream.coordinator import Producer, StreamCoordinator
from persistream.errors import OwnershipConflict, StreamNotFound
from persistream.events import EventType, StreamEventEmitter
from persistream.persistence.database import close_db, init_db
from persistream.persistence.ledger import StreamLedger
from persistream.producers import LiteLLMProducer
from persistream.schemas.config import StreamingConfig
from persistream.schemas.stream import (
    BeginStreamRequest,
    ClearResponse,
    CreateStreamRequest,
    CreateStreamResponse,
    StreamBody,
    StreamRecord,
    StreamStatus,
)
from persistream.transport import LiveChannel

logger = logging.getLogger(__name__)

# Status code for "already active/finished": the caller should reset its
# view to the persisted body
ALREADY_STARTED_STATUS = 205


async def _relay(channel: LiveChannel) -> AsyncIterator[bytes]:
    """Yield channel bytes; detach the channel if the client goes away."""
    finished = False
    try:
        async for data in channel:
            yield data
        finished = True
    finally:
        if not finished:
            channel.detach()


async def _watchdog(ledger: StreamLedger, config: StreamingConfig) -> None:
    """Periodically time out streams that stopped receiving writes."""
    while True:
        await asyncio.sleep(config.sweep_interval)
        await ledger.expire_stale(config.stale_after)


def create_app(
    config: StreamingConfig | None = None,
    *,
    producer: Producer | None = None,
    ledger: StreamLedger | None = None,
    emitter: StreamEventEmitter | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Streaming configuration. Defaults to StreamingConfig().
        producer: Producer used by the drive endpoint. Defaults to a
            LiteLLMProducer built from config.
        ledger: An already-open ledger. When omitted, the app opens the
            database at config.db_path on startup and closes it on
            shutdown.
        emitter: Event emitter shared with the coordinator.

    Returns:
        The configured FastAPI app. Its state carries ``ledger``,
        ``coordinator``, ``producer`` and ``emitter``.
    """
    config = config or StreamingConfig()
    emitter = emitter or StreamEventEmitter()

    def bind(app: FastAPI, bound: StreamLedger) -> None:
        app.state.ledger = bound
        app.state.emitter = emitter
        app.state.coordinator = StreamCoordinator(
            bound, emitter=emitter, timeout=config.producer_timeout
        )
        app.state.producer = producer or LiteLLMProducer(
            config.model,
            bound,
            system=config.system_prompt,
            api_key_env=config.api_key_env,
            history=config.history,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db = None
        if getattr(app.state, "ledger", None) is None:
            db = await init_db(config.db_path)
            bind(app, StreamLedger(db))
        sweeper = None
        if config.stale_after > 0:
            sweeper = asyncio.create_task(_watchdog(app.state.ledger, config))
        try:
            yield
        finally:
            if sweeper is not None:
                sweeper.cancel()
                with suppress(asyncio.CancelledError):
                    await sweeper
            await app.state.coordinator.aclose()
            if db is not None:
                await close_db(db)

    app = FastAPI(
        title="persistream",
        description="Persistent text streaming",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if ledger is not None:
        bind(app, ledger)

    # ── Ledger ───────────────────────────────────────────────────

    @app.post("/streams", status_code=201, response_model=CreateStreamResponse)
    async def create_stream(
        request: Request, body: CreateStreamRequest | None = None
    ) -> CreateStreamResponse:
        """Create a new pending stream."""
        prompt = body.prompt if body else ""
        stream_id = await request.app.state.ledger.create(prompt)
        await emitter.emit(EventType.STREAM_CREATED, stream_id=stream_id)
        return CreateStreamResponse(stream_id=stream_id)

    @app.get("/streams", response_model=list[StreamRecord])
    async def list_streams(
        request: Request,
        limit: int = 50,
        status: StreamStatus | None = None,
    ) -> list[StreamRecord]:
        """List streams, newest first."""
        return await request.app.state.ledger.list_streams(limit=limit, status=status)

    @app.get("/streams/{stream_id}", response_model=StreamBody)
    async def get_stream_body(stream_id: str, request: Request) -> StreamBody:
        """Return the persisted text and status of a stream."""
        try:
            return await request.app.state.ledger.get_body(stream_id)
        except StreamNotFound as e:
            raise HTTPException(status_code=404, detail=str(e)) from None

    @app.delete("/streams/{stream_id}")
    async def delete_stream(stream_id: str, request: Request) -> dict[str, str]:
        """Delete a single stream."""
        if not await request.app.state.ledger.delete_stream(stream_id):
            raise HTTPException(status_code=404, detail=f"Stream not found: {stream_id}")
        return {"status": "deleted"}

    @app.delete("/streams", response_model=ClearResponse)
    async def clear_streams(request: Request) -> ClearResponse:
        """Delete every stream and chunk."""
        deleted = await request.app.state.ledger.clear()
        await emitter.emit(EventType.STREAMS_CLEARED, deleted=deleted)
        return ClearResponse(deleted=deleted)

    # ── Live drive ───────────────────────────────────────────────

    @app.post("/stream")
    async def drive_stream(body: BeginStreamRequest, request: Request) -> Response:
        """Begin a pending stream and relay its text as it is produced."""
        coordinator: StreamCoordinator = request.app.state.coordinator
        try:
            handle = await coordinator.begin_stream(
                body.stream_id, request.app.state.producer
            )
        except OwnershipConflict:
            return Response(status_code=ALREADY_STARTED_STATUS)
        except StreamNotFound as e:
            raise HTTPException(status_code=404, detail=str(e)) from None

        return StreamingResponse(
            _relay(handle.readable),
            media_type="text/plain; charset=utf-8",
        )

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    return app
