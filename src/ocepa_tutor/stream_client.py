"""HTTP client for the tutor proxy.

The whole conversation history is posted on every request. In streaming mode
the reply body is decoded incrementally and each chunk is handed to a
callback as soon as it arrives; the non-streaming mode returns the reply in
one piece.
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import httpx

from .exceptions import StreamFailure
from .models import Message

logger = logging.getLogger(__name__)

FragmentCallback = Callable[[str], None]


class StreamOutcome(enum.Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CancellationToken:
    """Cooperative cancellation signal shared by the controller and the client."""

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self):
        await self._event.wait()


_CANCELLED = object()
_END = object()


async def _until_cancelled(awaitable: Awaitable[Any], token: CancellationToken) -> Any:
    """Await ``awaitable`` unless ``token`` fires first.

    Returns ``_CANCELLED`` when the token wins; the pending operation is then
    cancelled and awaited so nothing keeps reading in the background.
    """
    if token.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        return _CANCELLED
    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        raise
    finally:
        waiter.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await waiter
    if work in done:
        return work.result()
    work.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await work
    return _CANCELLED


async def _next_chunk(chunks) -> Any:
    try:
        return await anext(chunks)
    except StopAsyncIteration:
        return _END


def _history_payload(history: Sequence[Message]) -> dict:
    return {"history": [m.model_dump(mode="json") for m in history]}


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return f"Request failed with status {response.status_code}"


class ResponseStreamClient:
    """Talks to the proxy endpoint on behalf of the conversation controller."""

    def __init__(
        self,
        endpoint: str,
        *,
        streaming: bool = True,
        http_client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ):
        self.endpoint = endpoint
        self.streaming = streaming
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> ResponseStreamClient:
        return self

    async def __aexit__(self, *exc_info):
        await self.aclose()

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    async def complete(self, history: Sequence[Message]) -> str:
        """Request the whole reply at once."""
        try:
            response = await self._client.post(
                self.endpoint, params={"stream": "false"}, json=_history_payload(history)
            )
        except httpx.HTTPError as e:
            raise StreamFailure(f"Request to {self.endpoint} failed: {e}") from e

        if not response.is_success:
            raise StreamFailure(_error_message(response), status_code=response.status_code)
        try:
            data = response.json()
        except ValueError as e:
            raise StreamFailure("Response body is not valid JSON.") from e
        if not isinstance(data, dict) or not isinstance(data.get("text"), str):
            raise StreamFailure("Response body has no text.")
        return data["text"]

    async def stream(
        self,
        history: Sequence[Message],
        on_fragment: FragmentCallback,
        token: CancellationToken,
    ) -> StreamOutcome:
        """Deliver the reply to ``on_fragment`` in arrival order.

        Once ``token`` is cancelled no further fragments are delivered and the
        call returns ``StreamOutcome.CANCELLED``. Fragments delivered before
        that point stay delivered. Failures raise StreamFailure.
        """
        if not self.streaming:
            text = await _until_cancelled(self.complete(history), token)
            if text is _CANCELLED or token.cancelled:
                return StreamOutcome.CANCELLED
            on_fragment(text)
            return StreamOutcome.COMPLETED

        request = self._client.build_request(
            "POST", self.endpoint, json=_history_payload(history)
        )
        logger.debug("Streaming %d messages to %s", len(history), self.endpoint)
        try:
            response = await _until_cancelled(self._client.send(request, stream=True), token)
        except httpx.HTTPError as e:
            raise StreamFailure(f"Request to {self.endpoint} failed: {e}") from e
        if response is _CANCELLED:
            return StreamOutcome.CANCELLED

        try:
            if not response.is_success:
                await response.aread()
                raise StreamFailure(_error_message(response), status_code=response.status_code)

            received = False
            chunks = response.aiter_text()
            while True:
                try:
                    chunk = await _until_cancelled(_next_chunk(chunks), token)
                except httpx.HTTPError as e:
                    raise StreamFailure(f"Stream from {self.endpoint} broke off: {e}") from e
                if chunk is _END:
                    break
                if chunk is _CANCELLED or token.cancelled:
                    logger.debug("Stream cancelled")
                    return StreamOutcome.CANCELLED
                if chunk:
                    received = True
                    on_fragment(chunk)

            if not received:
                raise StreamFailure("Response body is empty.")
            return StreamOutcome.COMPLETED
        finally:
            await response.aclose()
