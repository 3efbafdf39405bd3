"""HTTP helpers for reading a stream live or from the ledger.

Uses httpx so the same code drives a remote server or an in-process app
mounted through ``httpx.ASGITransport``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

import httpx

from persistream.schemas.stream import StreamBody

logger = logging.getLogger(__name__)

# Response code the drive endpoint uses for "already active/finished"
_ALREADY_STARTED = 205


async def start_streaming(
    client: httpx.AsyncClient,
    url: str,
    stream_id: str,
    on_update: Callable[[str], object],
) -> bool:
    """Issue the begin/drive request and relay the body as it arrives.

    Args:
        client: HTTP client used for the request.
        url: URL of the drive endpoint.
        stream_id: The stream to begin.
        on_update: Called with each decoded text increment.

    Returns:
        True if the body was read to a clean end. False if the stream was
        already started elsewhere, the endpoint could not be reached or
        answered with an error, or the request or read broke part way
        for any reason, including an in-process app raising. A False
        result means this session did not capture the full text live.
    """
    try:
        async with client.stream("POST", url, json={"streamId": stream_id}) as response:
            if response.status_code == _ALREADY_STARTED:
                logger.warning("Stream %s already finished or active", stream_id)
                return False
            if not response.is_success:
                logger.warning(
                    "Failed to reach streaming endpoint for %s (HTTP %d)",
                    stream_id, response.status_code,
                )
                return False
            async for text in response.aiter_text():
                if text:
                    result = on_update(text)
                    if asyncio.iscoroutine(result):
                        await result
    except Exception as e:
        logger.warning("Error reading stream %s: %s", stream_id, e)
        return False
    return True


async def fetch_persisted_body(
    client: httpx.AsyncClient,
    url: str,
) -> StreamBody:
    """Fetch a persisted body from the ledger endpoint at ``url``.

    Raises:
        httpx.HTTPStatusError: If the endpoint answers with an error.
    """
    response = await client.get(url)
    response.raise_for_status()
    return StreamBody.model_validate(response.json())
