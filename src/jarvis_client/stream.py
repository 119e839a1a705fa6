"""Streaming session: one outbound streaming call and its observers.

Lifecycle:
    idle -> running -> terminated

A session runs once. It terminates when the server sends a done event with
scope "*", when the transport reaches end of stream (treated as a total
done event), when the transport fails (reported as an error event), or when
stop() is called. Done events with any other scope are delivered to
observers and the session keeps running.

Usage:
    stream = client.jarvis.stream.jarvis("hi")
    stream.on_response(lambda e: print(e.value)).on_done(lambda e: print("done"))
    await stream.start()
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from .classifier import classify
from .dispatcher import Observer, ObserverRegistry
from .errors import ProtocolError, StreamStateError, TransportError
from .events import EventCategory, ObserverChannel, StreamEvent
from .frames import FrameDecoder
from .transport import CancelSignal, TransportFetcher

logger = logging.getLogger(__name__)

STREAM_HEADERS = {
    "Accept": "text/event-stream",
    "Cache-Control": "no-cache",
}

# Async source of extra request headers (e.g. Authorization)
HeaderProvider = Callable[[], Awaitable[dict[str, str]]]


class SessionState(str, Enum):
    """Stream session state machine."""

    IDLE = "idle"
    RUNNING = "running"
    TERMINATED = "terminated"


class JarvisStream:
    """A single streaming request with fluent observer registration."""

    def __init__(
        self,
        fetcher: TransportFetcher,
        url: str,
        *,
        method: str = "GET",
        payload: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        auth: HeaderProvider | None = None,
    ):
        self._fetcher = fetcher
        self._url = url
        self.method = method.upper()
        self.payload: dict[str, Any] = dict(payload or {})
        self._headers = dict(headers or {})
        self._auth = auth

        self._observers = ObserverRegistry()
        self._decoder = FrameDecoder()
        self._signal = CancelSignal()

        self._state = SessionState.IDLE
        self._running = False
        self._stopped = False
        self._completed_scopes: list[str] = []

    @property
    def url(self) -> str:
        """The fully built stream URL."""
        return self._url

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def completed_scopes(self) -> tuple[str, ...]:
        """Scopes of partial done events received so far, in order."""
        return tuple(self._completed_scopes)

    # =========================================================================
    # Observer registration
    # =========================================================================

    def on(self, channel: ObserverChannel | str, callback: Observer) -> JarvisStream:
        """Register a callback for any observer channel."""
        self._observers.register(channel, callback)
        return self

    def on_output(self, callback: Observer) -> JarvisStream:
        return self.on(ObserverChannel.OUTPUT, callback)

    def on_response(self, callback: Observer) -> JarvisStream:
        """Interim and final responses; check event.is_final."""
        return self.on(ObserverChannel.RESPONSE, callback)

    def on_thoughts(self, callback: Observer) -> JarvisStream:
        """Interim and final reasoning; check event.is_final."""
        return self.on(ObserverChannel.THOUGHTS, callback)

    def on_tool_calls(self, callback: Observer) -> JarvisStream:
        return self.on(ObserverChannel.TOOL_CALLS, callback)

    def on_tool_call(self, callback: Observer) -> JarvisStream:
        return self.on(ObserverChannel.TOOL_CALL, callback)

    def on_mcp_tool_calls(self, callback: Observer) -> JarvisStream:
        return self.on(ObserverChannel.MCP_TOOL_CALLS, callback)

    def on_mcp_call(self, callback: Observer) -> JarvisStream:
        return self.on(ObserverChannel.MCP_CALL, callback)

    def on_nlu(self, callback: Observer) -> JarvisStream:
        return self.on(ObserverChannel.NLU, callback)

    def on_conversation(self, callback: Observer) -> JarvisStream:
        return self.on(ObserverChannel.CONVERSATION, callback)

    def on_audio_chunk(self, callback: Observer) -> JarvisStream:
        return self.on(ObserverChannel.AUDIO_CHUNK, callback)

    def on_error(self, callback: Observer) -> JarvisStream:
        return self.on(ObserverChannel.ERROR, callback)

    def on_done(self, callback: Observer) -> JarvisStream:
        return self.on(ObserverChannel.DONE, callback)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Open the stream and dispatch events until it terminates.

        Raises:
            StreamStateError: If the session is running or already terminated
            ProtocolError: If the response has no streamable body
        """
        if self._state is SessionState.RUNNING:
            raise StreamStateError("Stream is already active")
        if self._state is SessionState.TERMINATED:
            raise StreamStateError("Stream has already finished; create a new stream")

        self._state = SessionState.RUNNING
        self._running = True
        logger.debug(f"Starting {self.method} stream: {self._url}")

        try:
            await self._run()
        finally:
            self._running = False
            self._state = SessionState.TERMINATED
            await self._fetcher.close()
            logger.debug(f"Stream terminated: {self._url}")

    def stop(self) -> None:
        """Stop the stream. Safe to call more than once and from callbacks."""
        if self._stopped:
            return
        self._stopped = True
        self._running = False
        self._signal.cancel()
        if self._state is SessionState.IDLE:
            self._state = SessionState.TERMINATED

    async def __aenter__(self) -> JarvisStream:
        return self

    async def __aexit__(self, *args: Any) -> None:
        self.stop()

    async def _run(self) -> None:
        headers = {**STREAM_HEADERS, **self._headers}
        if self._auth is not None:
            headers.update(await self._auth())
        if self.method == "POST":
            headers["Content-Type"] = "application/json"
        body = self.payload if self.method == "POST" else None

        result = await self._fetcher.fetch(
            self.method, self._url, headers=headers, json=body, signal=self._signal
        )
        if result.cancelled:
            return
        response = result.response
        if response is None:
            if result.error is not None:
                await self._fail(result.error)
            return

        try:
            if response.status_code == 204:
                raise ProtocolError("No response body available for streaming")
            await self._read(response)
        finally:
            await response.aclose()

    async def _read(self, response: Any) -> None:
        try:
            async with contextlib.aclosing(
                self._fetcher.iter_text(response, self._signal)
            ) as chunks:
                async for chunk in chunks:
                    if not self._running:
                        return
                    for frame in self._decoder.feed(chunk):
                        if frame.event:
                            logger.debug(f"Frame event hint: {frame.event}")
                        for event in classify(frame.data):
                            if not self._running:
                                return
                            await self._deliver(event)
        except TransportError as e:
            await self._fail(e)
            return

        if self._running:
            # End of stream without an explicit total done event
            await self._deliver(StreamEvent.done())

    async def _deliver(self, event: StreamEvent) -> None:
        await self._observers.dispatch(event)
        if event.category is not EventCategory.DONE:
            return
        if event.is_total_completion:
            self._running = False
        elif event.scope is not None:
            self._completed_scopes.append(event.scope)

    async def _fail(self, error: TransportError) -> None:
        logger.warning(f"Stream failed: {error}")
        if self._running:
            await self._observers.dispatch(StreamEvent.failure(error))
        self._running = False
