"""Tests for the FastAPI server: ledger endpoints and the drive endpoint."""

from __future__ import annotations

import asyncio

import httpx
import pytest
from fastapi import FastAPI

from persistream.events import EventType, StreamEventEmitter
from persistream.persistence.database import close_db, init_db
from persistream.persistence.ledger import StreamLedger
from persistream.producers import FragmentProducer
from persistream.schemas.config import StreamingConfig
from persistream.schemas.stream import StreamStatus
from persistream.server import ALREADY_STARTED_STATUS, create_app

# ── Helpers ───────────────────────────────────────────────────


async def _make_app(producer=None, **kwargs) -> tuple[FastAPI, StreamLedger]:
    ledger = StreamLedger(await init_db(":memory:"))
    app = create_app(
        StreamingConfig(),
        producer=producer or FragmentProducer(["Hi", " there.", " More."]),
        ledger=ledger,
        **kwargs,
    )
    return app, ledger


def _client(app: FastAPI, **transport_kwargs) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app, **transport_kwargs),
        base_url="http://test",
    )


async def _failing(stream_id, append):
    await append("Hello ")
    raise RuntimeError("model crashed")


# ── App Construction ───────────────────────────────────────────


class TestCreateApp:
    def test_returns_fastapi_instance(self):
        app = create_app(StreamingConfig())
        assert isinstance(app, FastAPI)

    def test_has_routes(self):
        app = create_app(StreamingConfig())
        paths = {route.path for route in app.routes}
        assert {"/streams", "/streams/{stream_id}", "/stream", "/health"} <= paths

    @pytest.mark.asyncio
    async def test_injected_ledger_is_bound(self):
        app, ledger = await _make_app()
        assert app.state.ledger is ledger
        assert app.state.coordinator.ledger is ledger
        await close_db(ledger._db)

    @pytest.mark.asyncio
    async def test_lifespan_opens_and_closes_database(self, tmp_path):
        config = StreamingConfig(db_path=str(tmp_path / "streams.db"), stale_after=60)
        app = create_app(config, producer=FragmentProducer(["x."]))

        async with app.router.lifespan_context(app):
            stream_id = await app.state.ledger.create()
            assert await app.state.ledger.get_status(stream_id) == StreamStatus.PENDING

        assert (tmp_path / "streams.db").exists()


# ── Ledger Endpoints ───────────────────────────────────────────


class TestLedgerEndpoints:
    @pytest.mark.asyncio
    async def test_health(self):
        app, ledger = await _make_app()
        async with _client(app) as client:
            resp = await client.get("/health")
        assert resp.json() == {"status": "ok"}
        await close_db(ledger._db)

    @pytest.mark.asyncio
    async def test_create_and_read_pending_stream(self):
        app, ledger = await _make_app()
        async with _client(app) as client:
            resp = await client.post("/streams", json={"prompt": "Say hi"})
            assert resp.status_code == 201
            stream_id = resp.json()["stream_id"]

            body = await client.get(f"/streams/{stream_id}")
        assert body.json() == {"text": "", "status": "pending"}
        assert (await ledger.get_stream(stream_id)).prompt == "Say hi"
        await close_db(ledger._db)

    @pytest.mark.asyncio
    async def test_create_without_body(self):
        app, ledger = await _make_app()
        async with _client(app) as client:
            resp = await client.post("/streams")
        assert resp.status_code == 201
        assert len(resp.json()["stream_id"]) == 32
        await close_db(ledger._db)

    @pytest.mark.asyncio
    async def test_unknown_stream_is_404(self):
        app, ledger = await _make_app()
        async with _client(app) as client:
            resp = await client.get("/streams/missing")
        assert resp.status_code == 404
        assert "missing" in resp.json()["detail"]
        await close_db(ledger._db)

    @pytest.mark.asyncio
    async def test_list_streams_with_status_filter(self):
        app, ledger = await _make_app()
        pending = await ledger.create("a")
        done = await ledger.create("b")
        await ledger.set_status(done, StreamStatus.DONE)

        async with _client(app) as client:
            everything = (await client.get("/streams")).json()
            only_pending = (await client.get("/streams", params={"status": "pending"})).json()

        assert {r["stream_id"] for r in everything} == {pending, done}
        assert [r["stream_id"] for r in only_pending] == [pending]
        await close_db(ledger._db)

    @pytest.mark.asyncio
    async def test_delete_stream(self):
        app, ledger = await _make_app()
        stream_id = await ledger.create()
        async with _client(app) as client:
            assert (await client.delete(f"/streams/{stream_id}")).status_code == 200
            assert (await client.delete(f"/streams/{stream_id}")).status_code == 404
        await close_db(ledger._db)

    @pytest.mark.asyncio
    async def test_clear_streams_emits_event(self):
        emitter = StreamEventEmitter()
        app, ledger = await _make_app(emitter=emitter)
        await ledger.create()
        await ledger.create()

        async with _client(app) as client:
            resp = await client.delete("/streams")

        assert resp.json() == {"deleted": 2}
        assert emitter.history[-1].type == EventType.STREAMS_CLEARED
        await close_db(ledger._db)


# ── Drive Endpoint ─────────────────────────────────────────────


class TestDriveEndpoint:
    @pytest.mark.asyncio
    async def test_streams_text_and_persists_it(self):
        app, ledger = await _make_app()
        stream_id = await ledger.create()

        async with _client(app) as client:
            resp = await client.post("/stream", json={"streamId": stream_id})
            await app.state.coordinator.join()
            persisted = await client.get(f"/streams/{stream_id}")

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/plain")
        assert resp.text == "Hi there. More."
        assert persisted.json() == {"text": "Hi there. More.", "status": "done"}
        assert len(await ledger.get_chunks(stream_id)) == 2
        await close_db(ledger._db)

    @pytest.mark.asyncio
    async def test_second_drive_gets_already_started(self):
        app, ledger = await _make_app()
        stream_id = await ledger.create()

        async with _client(app) as client:
            first = await client.post("/stream", json={"streamId": stream_id})
            second = await client.post("/stream", json={"streamId": stream_id})
            await app.state.coordinator.join()

        assert first.status_code == 200
        assert second.status_code == ALREADY_STARTED_STATUS
        assert second.content == b""
        assert (await ledger.get_body(stream_id)).text == "Hi there. More."
        await close_db(ledger._db)

    @pytest.mark.asyncio
    async def test_concurrent_drives_have_one_owner(self):
        app, ledger = await _make_app(
            producer=FragmentProducer(["Slow ", "answer."], delay=0.01)
        )
        stream_id = await ledger.create()

        async with _client(app) as client:
            results = await asyncio.gather(
                client.post("/stream", json={"streamId": stream_id}),
                client.post("/stream", json={"streamId": stream_id}),
            )
            await app.state.coordinator.join()

        assert sorted(r.status_code for r in results) == [200, ALREADY_STARTED_STATUS]
        assert (await ledger.get_body(stream_id)).text == "Slow answer."
        await close_db(ledger._db)

    @pytest.mark.asyncio
    async def test_unknown_stream_is_404(self):
        app, ledger = await _make_app()
        async with _client(app) as client:
            resp = await client.post("/stream", json={"streamId": "missing"})
        assert resp.status_code == 404
        await close_db(ledger._db)

    @pytest.mark.asyncio
    async def test_missing_stream_id_is_422(self):
        app, ledger = await _make_app()
        async with _client(app) as client:
            resp = await client.post("/stream", json={})
        assert resp.status_code == 422
        await close_db(ledger._db)

    @pytest.mark.asyncio
    async def test_producer_failure_breaks_response_and_records_error(self):
        app, ledger = await _make_app(producer=_failing)
        stream_id = await ledger.create()

        async with _client(app, raise_app_exceptions=False) as client:
            resp = await client.post("/stream", json={"streamId": stream_id})
            await app.state.coordinator.join()

        assert resp.text == "Hello "
        assert await ledger.get_status(stream_id) == StreamStatus.ERROR
        await close_db(ledger._db)
