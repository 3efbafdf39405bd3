"""Tests for persistream.client.fetch: live drive request and body fetch."""

from __future__ import annotations

import json

import httpx
import pytest

from persistream.client.fetch import fetch_persisted_body, start_streaming
from persistream.schemas.stream import StreamBody, StreamStatus

_URL = "http://test/stream"


# ── Helpers ───────────────────────────────────────────────────


class _BrokenStream(httpx.AsyncByteStream):
    """Yields some bytes, then fails like a dropped connection."""

    async def __aiter__(self):
        yield b"Hello "
        raise httpx.ReadError("connection reset")


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ── start_streaming ────────────────────────────────────────────


class TestStartStreaming:
    @pytest.mark.asyncio
    async def test_relays_body_and_succeeds(self):
        requests: list[httpx.Request] = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, content=b"Hello World!")

        received: list[str] = []
        async with _client(handler) as client:
            ok = await start_streaming(client, _URL, "s1", received.append)

        assert ok is True
        assert "".join(received) == "Hello World!"
        assert requests[0].method == "POST"
        assert json.loads(requests[0].content) == {"streamId": "s1"}

    @pytest.mark.asyncio
    async def test_awaits_async_callback(self):
        received: list[str] = []

        async def on_update(text):
            received.append(text)

        async with _client(lambda r: httpx.Response(200, content=b"Hi.")) as client:
            assert await start_streaming(client, _URL, "s1", on_update) is True
        assert received == ["Hi."]

    @pytest.mark.asyncio
    async def test_already_started_is_failure(self):
        received: list[str] = []
        async with _client(lambda r: httpx.Response(205)) as client:
            ok = await start_streaming(client, _URL, "s1", received.append)
        assert ok is False
        assert received == []

    @pytest.mark.asyncio
    async def test_error_status_is_failure(self):
        async with _client(lambda r: httpx.Response(500, content=b"oops")) as client:
            assert await start_streaming(client, _URL, "s1", lambda t: None) is False

    @pytest.mark.asyncio
    async def test_read_error_keeps_partial_text(self):
        received: list[str] = []
        async with _client(lambda r: httpx.Response(200, stream=_BrokenStream())) as client:
            ok = await start_streaming(client, _URL, "s1", received.append)

        assert ok is False
        assert "".join(received) == "Hello "

    @pytest.mark.asyncio
    async def test_connection_error_is_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with _client(handler) as client:
            assert await start_streaming(client, _URL, "s1", lambda t: None) is False

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_failure(self):
        def handler(request):
            raise RuntimeError("app crashed")

        async with _client(handler) as client:
            assert await start_streaming(client, _URL, "s1", lambda t: None) is False


# ── fetch_persisted_body ───────────────────────────────────────


class TestFetchPersistedBody:
    @pytest.mark.asyncio
    async def test_parses_body(self):
        payload = {"text": "Saved.", "status": "done"}
        async with _client(lambda r: httpx.Response(200, json=payload)) as client:
            body = await fetch_persisted_body(client, "http://test/streams/s1")
        assert body == StreamBody(text="Saved.", status=StreamStatus.DONE)

    @pytest.mark.asyncio
    async def test_error_status_raises(self):
        async with _client(lambda r: httpx.Response(404, json={"detail": "x"})) as client:
            with pytest.raises(httpx.HTTPStatusError):
                await fetch_persisted_body(client, "http://test/streams/s1")
