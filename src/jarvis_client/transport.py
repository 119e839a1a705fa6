"""HTTP transport for streaming requests.

One fetch per stream run. Failures at connect time come back as a
FetchResult carrying a TransportError instead of being raised, so the
stream layer can report them to observers. Cancellation is cooperative via
CancelSignal, which interrupts both the connect and any in-flight read.
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx

from .errors import TransportError, TransportErrorKind

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancelSignal:
    """Cancellation handle shared between a stream and its transport."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


class _Cancelled(Exception):
    """Raised internally when a CancelSignal fires during an await."""


async def _race(awaitable: Awaitable[T], signal: CancelSignal | None) -> T:
    """Await awaitable unless signal fires first."""
    if signal is None:
        return await awaitable
    if signal.cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise _Cancelled()

    work = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(signal.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        raise
    finally:
        waiter.cancel()

    if work.done():
        return work.result()

    work.cancel()
    with contextlib.suppress(asyncio.CancelledError, StopAsyncIteration, httpx.HTTPError):
        await work
    raise _Cancelled()


@dataclass
class FetchResult:
    """Outcome of opening a stream: a response, an error, or neither if cancelled."""

    response: httpx.Response | None = None
    error: TransportError | None = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.response is not None and self.error is None


class TransportFetcher:
    """Issues one streaming HTTP request and reads its body as text chunks."""

    def __init__(
        self,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                transport=self._transport,
                timeout=httpx.Timeout(self.timeout, read=None),  # No read timeout for SSE
            )
        return self._client

    async def fetch(
        self,
        method: str,
        url: str,
        headers: dict[str, str] | None = None,
        json: Any = None,
        signal: CancelSignal | None = None,
    ) -> FetchResult:
        """Open the stream. Never raises for HTTP or network failures."""
        client = self._ensure_client()
        request = client.build_request(method, url, headers=headers, json=json)

        try:
            response = await _race(client.send(request, stream=True), signal)
        except _Cancelled:
            return FetchResult(cancelled=True)
        except httpx.TimeoutException:
            return FetchResult(
                error=TransportError(
                    f"Connection timed out after {self.timeout}s",
                    kind=TransportErrorKind.TIMEOUT,
                )
            )
        except httpx.RequestError as e:
            return FetchResult(
                error=TransportError(f"Network error: {e}", kind=TransportErrorKind.NETWORK)
            )

        if response.is_success:
            return FetchResult(response=response)

        try:
            await response.aread()
            body = response.text
        except httpx.HTTPError:
            body = "Unknown error"
        finally:
            await response.aclose()

        message = f"HTTP {response.status_code}: {response.reason_phrase}"
        if body:
            message = f"{message} - {body}"
        logger.warning(f"Stream request failed: {message}")
        return FetchResult(
            error=TransportError(
                message,
                kind=TransportErrorKind.HTTP_STATUS,
                status_code=response.status_code,
            )
        )

    async def iter_text(
        self, response: httpx.Response, signal: CancelSignal | None = None
    ) -> AsyncIterator[str]:
        """Yield decoded text chunks until end of stream or cancellation.

        Raises:
            TransportError: If the connection fails mid-stream
        """
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        chunks = response.aiter_bytes().__aiter__()

        while True:
            try:
                raw = await _race(chunks.__anext__(), signal)
            except (_Cancelled, StopAsyncIteration):
                break
            except httpx.TimeoutException as e:
                raise TransportError(
                    f"Stream read timed out: {e}", kind=TransportErrorKind.TIMEOUT
                ) from e
            except httpx.HTTPError as e:
                raise TransportError(
                    f"Stream interrupted: {e}", kind=TransportErrorKind.NETWORK
                ) from e

            text = decoder.decode(raw)
            if text:
                yield text

        tail = decoder.decode(b"", final=True)
        if tail and not (signal and signal.cancelled):
            yield tail

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
