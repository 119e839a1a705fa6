"""Tests for the streaming HTTP transport."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from jarvis_client.errors import TransportErrorKind
from jarvis_client.transport import CancelSignal, TransportFetcher


class TestCancelSignal:
    """Tests for CancelSignal."""

    @pytest.mark.asyncio
    async def test_cancel_wakes_waiters(self) -> None:
        signal = CancelSignal()
        waiter = asyncio.create_task(signal.wait())

        signal.cancel()
        await asyncio.wait_for(waiter, timeout=1)

        assert signal.cancelled


class TestTransportFetcher:
    """Tests for TransportFetcher."""

    @pytest.mark.asyncio
    async def test_fetch_success(self, sse_transport) -> None:
        transport, requests = sse_transport(["data: x\n\n"])
        fetcher = TransportFetcher(transport=transport)

        result = await fetcher.fetch("GET", "http://api.test/s", headers={"X-Test": "1"})

        assert result.ok
        assert requests[0].headers["x-test"] == "1"
        chunks = [chunk async for chunk in fetcher.iter_text(result.response)]
        assert "".join(chunks) == "data: x\n\n"
        await result.response.aclose()
        await fetcher.close()

    @pytest.mark.asyncio
    async def test_fetch_http_error(self, sse_transport) -> None:
        transport, _ = sse_transport(["not found"], status_code=404)
        fetcher = TransportFetcher(transport=transport)

        result = await fetcher.fetch("GET", "http://api.test/s")

        assert not result.ok
        assert result.error.kind is TransportErrorKind.HTTP_STATUS
        assert result.error.status_code == 404
        assert str(result.error) == "HTTP 404: Not Found - not found"
        await fetcher.close()

    @pytest.mark.asyncio
    async def test_fetch_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("too slow")

        fetcher = TransportFetcher(timeout=2.0, transport=httpx.MockTransport(handler))

        result = await fetcher.fetch("GET", "http://api.test/s")

        assert result.error.kind is TransportErrorKind.TIMEOUT
        assert str(result.error) == "Connection timed out after 2.0s"
        await fetcher.close()

    @pytest.mark.asyncio
    async def test_fetch_after_cancel(self, sse_transport) -> None:
        transport, requests = sse_transport([])
        fetcher = TransportFetcher(transport=transport)
        signal = CancelSignal()
        signal.cancel()

        result = await fetcher.fetch("GET", "http://api.test/s", signal=signal)

        assert result.cancelled
        assert result.response is None
        assert requests == []
        await fetcher.close()

    @pytest.mark.asyncio
    async def test_iter_text_stops_on_cancel(self, sse_transport) -> None:
        hold = asyncio.Event()
        transport, _ = sse_transport(["first"], hold=hold)
        fetcher = TransportFetcher(transport=transport)
        signal = CancelSignal()
        result = await fetcher.fetch("GET", "http://api.test/s", signal=signal)

        chunks = []
        async for chunk in fetcher.iter_text(result.response, signal):
            chunks.append(chunk)
            signal.cancel()

        assert chunks == ["first"]
        await result.response.aclose()
        await fetcher.close()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self) -> None:
        fetcher = TransportFetcher()

        await fetcher.close()
        await fetcher.close()
