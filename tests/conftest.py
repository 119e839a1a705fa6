"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import httpx
import pytest


@pytest.fixture(scope="module")
def anyio_backend():
    """Configure anyio to use asyncio backend."""
    return "asyncio"


@pytest.fixture
def sse_transport() -> Callable[..., tuple[httpx.MockTransport, list[httpx.Request]]]:
    """Factory for a mock transport that streams the given chunks.

    Returns (transport, recorded_requests). If ``hold`` is an asyncio.Event
    the body blocks after the last chunk until the event is set.
    """

    def build(
        chunks: list[str | bytes],
        status_code: int = 200,
        hold: asyncio.Event | None = None,
    ) -> tuple[httpx.MockTransport, list[httpx.Request]]:
        requests: list[httpx.Request] = []

        async def body():
            for chunk in chunks:
                yield chunk.encode("utf-8") if isinstance(chunk, str) else chunk
            if hold is not None:
                await hold.wait()

        async def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                status_code,
                headers={"content-type": "text/event-stream"},
                content=body(),
            )

        return httpx.MockTransport(handler), requests

    return build


@pytest.fixture
def json_transport() -> Callable[..., tuple[httpx.MockTransport, list[httpx.Request]]]:
    """Factory for a mock transport answering every request with one JSON body."""

    def build(
        payload: Any, status_code: int = 200
    ) -> tuple[httpx.MockTransport, list[httpx.Request]]:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(status_code, json=payload)

        return httpx.MockTransport(handler), requests

    return build
