"""Text producers that feed a stream through a chunk appender.

A producer is any async callable ``(stream_id, append)`` that calls
``await append(text)`` for each fragment it generates. The LiteLLM
producer routes generation to any provider LiteLLM supports; the
fragment producer replays a fixed list for demos and tests.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Sequence

import litellm

# Suppress LiteLLM's "Give Feedback / Get Help" and "Provider List" banners
litellm.suppress_debug_info = True

from persistream.coordinator import ChunkAppender
from persistream.persistence.ledger import StreamLedger
from persistream.schemas.stream import StreamStatus

logger = logging.getLogger(__name__)

# Max retries for transient failures
_MAX_RETRIES = 3
_BASE_BACKOFF = 1.0  # seconds


def _short_error_reason(error: Exception) -> str:
    """Extract a short, user-friendly reason from a LiteLLM error."""
    error_str = str(error).lower()
    if "rate" in error_str or "429" in error_str:
        return "rate limit"
    if "overloaded" in error_str or "529" in error_str:
        return "overloaded"
    if "timeout" in error_str or isinstance(error, TimeoutError):
        return "timeout"
    if "503" in error_str or "unavailable" in error_str:
        return "service unavailable"
    if "connection" in error_str:
        return "connection error"
    return str(error)[:80]


class LiteLLMProducer:
    """Generates a stream's text with a streaming LiteLLM completion.

    The prompt is read from the stream's ledger record. When ``history``
    is positive, the prompts and bodies of that many earlier finished
    streams are sent first so the model continues the conversation.
    """

    def __init__(
        self,
        model: str,
        ledger: StreamLedger,
        *,
        system: str = "",
        timeout: int = 120,
        api_key_env: str = "",
        api_base: str = "",
        history: int = 0,
    ) -> None:
        self._model = model
        self._ledger = ledger
        self._system = system
        self._timeout = timeout
        self._api_key_env = api_key_env
        self._api_key = os.environ.get(api_key_env, "") if api_key_env else ""
        self._api_base = api_base
        self._history = history

    @property
    def model(self) -> str:
        """LiteLLM model identifier."""
        return self._model

    async def __call__(self, stream_id: str, append: ChunkAppender) -> None:
        record = await self._ledger.get_stream(stream_id)
        messages = await self._build_messages(stream_id, record.prompt)
        kwargs = self._build_completion_kwargs(messages)

        response = await self._call_streaming_with_retry(kwargs)
        async for chunk in response:
            delta = ""
            if chunk.choices and chunk.choices[0].delta:
                delta = chunk.choices[0].delta.content or ""
            if delta:
                await append(delta)

    async def _build_messages(self, stream_id: str, prompt: str) -> list[dict[str, str]]:
        messages: list[dict[str, str]] = []
        if self._system:
            messages.append({"role": "system", "content": self._system})

        if self._history:
            earlier = await self._ledger.list_streams(
                limit=self._history + 1, status=StreamStatus.DONE
            )
            earlier = [r for r in earlier if r.stream_id != stream_id][: self._history]
            # list_streams is newest first; the model wants chronological order
            for record in reversed(earlier):
                body = await self._ledger.get_body(record.stream_id)
                messages.append({"role": "user", "content": record.prompt})
                messages.append({"role": "assistant", "content": body.text})

        messages.append({"role": "user", "content": prompt})
        return messages

    def _build_completion_kwargs(self, messages: list[dict[str, str]]) -> dict:
        """Build the kwargs dict for litellm.acompletion."""
        kwargs: dict = {
            "model": self._model,
            "messages": messages,
            "timeout": float(self._timeout),
            "stream": True,
        }
        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self._api_base:
            kwargs["api_base"] = self._api_base
        return kwargs

    async def _call_streaming_with_retry(self, kwargs: dict):
        """Call litellm.acompletion with stream=True and retry on failure.

        Retries transient errors (rate limits, server errors, timeouts)
        with exponential backoff. Only the opening call is retried: once
        fragments have been appended a restart would duplicate text.

        Raises:
            TimeoutError: If all retries time out.
            RuntimeError: If the call fails permanently or after all retries.
        """
        last_error: Exception | None = None

        for attempt in range(_MAX_RETRIES):
            try:
                return await litellm.acompletion(**kwargs)
            except TimeoutError:
                last_error = TimeoutError(
                    f"Streaming call timed out after {kwargs.get('timeout')}s "
                    f"(attempt {attempt + 1}/{_MAX_RETRIES})"
                )
            except litellm.AuthenticationError:
                raise RuntimeError(
                    f"Authentication failed for {self._model}. "
                    f"Check that {self._api_key_env or 'the provider API key'} is set."
                ) from None
            except litellm.BadRequestError as e:
                raise RuntimeError(f"Bad request to {self._model}: {e}") from e
            except (
                litellm.RateLimitError,
                litellm.ServiceUnavailableError,
                litellm.InternalServerError,
                litellm.APIConnectionError,
            ) as e:
                last_error = e

            if attempt < _MAX_RETRIES - 1:
                backoff = _BASE_BACKOFF * (2**attempt)
                logger.warning(
                    "Streaming retry %d/%d for %s (%s, backoff: %.1fs)",
                    attempt + 1, _MAX_RETRIES, self._model,
                    _short_error_reason(last_error), backoff,
                )
                await asyncio.sleep(backoff)

        if isinstance(last_error, TimeoutError):
            raise last_error
        raise RuntimeError(
            f"Streaming call to {self._model} failed after "
            f"{_MAX_RETRIES} retries: {last_error}"
        ) from last_error


class FragmentProducer:
    """Replays a fixed sequence of fragments, optionally paced."""

    def __init__(self, fragments: Sequence[str], delay: float = 0.0) -> None:
        self._fragments = list(fragments)
        self._delay = delay

    async def __call__(self, stream_id: str, append: ChunkAppender) -> None:
        for fragment in self._fragments:
            if self._delay:
                await asyncio.sleep(self._delay)
            await append(fragment)
