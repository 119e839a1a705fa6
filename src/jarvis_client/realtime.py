"""Realtime broadcast channel for out-of-band client notifications.

Each client listens on one channel named after its api key. Inbound
broadcasts have the shape ``{"type": "broadcast", "event": ..., "payload": ...}``
and are routed by their event name:

- ``client-<client_id>``: messages addressed to this client
- ``webhook-init-client-<client_id>``: webhook-initiated messages; those whose
  payload has ``type == "response_initiator"`` are also routed to
  response-initiator observers

The default channel speaks the Supabase Realtime (Phoenix channels) wire
protocol over a websocket:
- Client -> server: phx_join, broadcast, heartbeat, phx_leave
- Server -> client: phx_reply, broadcast, phx_error, phx_close
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable
from urllib.parse import urlencode

from .errors import ConfigurationError

if TYPE_CHECKING:
    from .client import JarvisClient

logger = logging.getLogger(__name__)

BroadcastCallback = Callable[[dict[str, Any]], Any]
StatusCallback = Callable[[str], Any]

HEARTBEAT_INTERVAL = 30.0
PHOENIX_VSN = "1.0.0"

# Subscription statuses reported to status callbacks
SUBSCRIBED = "SUBSCRIBED"
CHANNEL_ERROR = "CHANNEL_ERROR"
CLOSED = "CLOSED"


async def _call(callback: Callable[..., Any], *args: Any) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class ChannelState(str, Enum):
    """Channel subscription state."""

    CLOSED = "closed"
    JOINING = "joining"
    JOINED = "joined"
    ERRORED = "errored"


@runtime_checkable
class BroadcastChannel(Protocol):
    """A named pub/sub channel."""

    @property
    def state(self) -> ChannelState: ...

    def on_broadcast(self, callback: BroadcastCallback) -> BroadcastChannel: ...

    async def subscribe(self, status_callback: StatusCallback | None = None) -> None: ...

    async def send(self, message: dict[str, Any]) -> None: ...

    async def unsubscribe(self) -> None: ...


ChannelFactory = Callable[[str], BroadcastChannel]


@dataclass
class PhoenixMessage:
    """Phoenix channel wire message."""

    topic: str
    event: str
    payload: dict[str, Any] = field(default_factory=dict)
    ref: str | None = None

    def to_json(self) -> str:
        return json.dumps(
            {"topic": self.topic, "event": self.event, "payload": self.payload, "ref": self.ref}
        )

    @classmethod
    def from_json(cls, data: str | bytes) -> PhoenixMessage:
        parsed = json.loads(data)
        return cls(
            topic=parsed["topic"],
            event=parsed["event"],
            payload=parsed.get("payload") or {},
            ref=parsed.get("ref"),
        )


def realtime_socket_url(base_url: str, api_key: str) -> str:
    """Websocket URL for a Realtime project URL."""
    url = base_url.rstrip("/").replace("https://", "wss://").replace("http://", "ws://")
    if not url.endswith("/websocket"):
        url = f"{url}/realtime/v1/websocket"
    return f"{url}?{urlencode({'apikey': api_key, 'vsn': PHOENIX_VSN})}"


class PhoenixBroadcastChannel:
    """Broadcast channel over a Phoenix websocket."""

    def __init__(
        self,
        url: str,
        api_key: str,
        name: str,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
    ):
        self.name = name
        self.topic = f"realtime:{name}"
        self._socket_url = realtime_socket_url(url, api_key)
        self._heartbeat_interval = heartbeat_interval

        self._ws: Any = None  # websockets ClientConnection
        self._state = ChannelState.CLOSED
        self._callbacks: list[BroadcastCallback] = []
        self._status_callback: StatusCallback | None = None
        self._join_ref: str | None = None
        self._ref = 0
        self._reader_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> ChannelState:
        return self._state

    def on_broadcast(self, callback: BroadcastCallback) -> PhoenixBroadcastChannel:
        self._callbacks.append(callback)
        return self

    def _next_ref(self) -> str:
        self._ref += 1
        return str(self._ref)

    async def _push(self, topic: str, event: str, payload: dict[str, Any]) -> str:
        if self._ws is None:
            raise ConnectionError(f"Channel {self.name} is not connected")
        ref = self._next_ref()
        await self._ws.send(PhoenixMessage(topic, event, payload, ref).to_json())
        return ref

    async def subscribe(self, status_callback: StatusCallback | None = None) -> None:
        """Connect the websocket and join the channel.

        Raises:
            ConnectionError: If the websocket cannot be opened
        """
        import websockets

        if self._state in (ChannelState.JOINING, ChannelState.JOINED):
            return

        self._status_callback = status_callback
        self._state = ChannelState.JOINING
        try:
            # Phoenix heartbeats replace websocket pings
            self._ws = await websockets.connect(self._socket_url, ping_interval=None)
        except Exception as e:
            self._state = ChannelState.ERRORED
            raise ConnectionError(f"Failed to connect to realtime channel: {e}") from e

        self._join_ref = await self._push(
            self.topic,
            "phx_join",
            {"config": {"broadcast": {"self": False, "ack": False}, "presence": {"key": ""}}},
        )
        self._reader_task = asyncio.create_task(self._read_loop())
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        logger.info(f"Joining realtime channel {self.name}")

    async def send(self, message: dict[str, Any]) -> None:
        """Broadcast a message ({type, event, payload}) on this channel."""
        await self._push(self.topic, "broadcast", message)

    async def unsubscribe(self) -> None:
        """Leave the channel and close the websocket."""
        if self._ws is None:
            self._state = ChannelState.CLOSED
            return

        with contextlib.suppress(Exception):
            await self._push(self.topic, "phx_leave", {})

        try:
            for task in (self._heartbeat_task, self._reader_task):
                if task is not None:
                    task.cancel()
                    # A loop that already failed has logged and reported its error
                    with contextlib.suppress(asyncio.CancelledError, Exception):
                        await task
        finally:
            self._heartbeat_task = None
            self._reader_task = None
            ws, self._ws = self._ws, None
            self._state = ChannelState.CLOSED
            await ws.close()
        logger.info(f"Left realtime channel {self.name}")

    async def _set_status(self, status: str) -> None:
        logger.debug(f"Realtime channel {self.name} status: {status}")
        if self._status_callback is not None:
            await _call(self._status_callback, status)

    async def _heartbeat_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._heartbeat_interval)
                await self._push("phoenix", "heartbeat", {})
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Realtime heartbeat failed: {e}")
            self._state = ChannelState.ERRORED
            await self._set_status(CHANNEL_ERROR)

    async def _read_loop(self) -> None:
        try:
            async for data in self._ws:
                try:
                    message = PhoenixMessage.from_json(data)
                except (json.JSONDecodeError, KeyError, TypeError) as e:
                    logger.warning(f"Invalid realtime message: {e}")
                    continue
                await self._handle(message)
            # Server closed the socket
            self._state = ChannelState.CLOSED
            await self._set_status(CLOSED)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Realtime receive error: {e}")
            self._state = ChannelState.ERRORED
            await self._set_status(CHANNEL_ERROR)

    async def _handle(self, message: PhoenixMessage) -> None:
        if message.topic != self.topic:
            return

        if message.event == "phx_reply" and message.ref == self._join_ref:
            if message.payload.get("status") == "ok":
                self._state = ChannelState.JOINED
                await self._set_status(SUBSCRIBED)
            else:
                self._state = ChannelState.ERRORED
                await self._set_status(CHANNEL_ERROR)
        elif message.event == "broadcast":
            for callback in list(self._callbacks):
                await _call(callback, message.payload)
        elif message.event == "phx_error":
            self._state = ChannelState.ERRORED
            await self._set_status(CHANNEL_ERROR)
        elif message.event == "phx_close":
            self._state = ChannelState.CLOSED
            await self._set_status(CLOSED)


class RealtimeChannelHandler:
    """Routes broadcasts on one channel to registered observers."""

    def __init__(self, channel: BroadcastChannel, client_id: str | None):
        self.channel = channel
        self.client_id = client_id
        self._message_handlers: list[BroadcastCallback] = []
        self._client_message_handlers: list[BroadcastCallback] = []
        self._webhook_handlers: list[BroadcastCallback] = []
        self._response_initiator_handlers: list[BroadcastCallback] = []

    def on_output(self, handler: BroadcastCallback) -> RealtimeChannelHandler:
        """Every inbound message."""
        self._message_handlers.append(handler)
        return self

    def on_client_message(self, handler: BroadcastCallback) -> RealtimeChannelHandler:
        self._client_message_handlers.append(handler)
        return self

    def on_webhook(self, handler: BroadcastCallback) -> RealtimeChannelHandler:
        self._webhook_handlers.append(handler)
        return self

    def on_response_initiator(self, handler: BroadcastCallback) -> RealtimeChannelHandler:
        self._response_initiator_handlers.append(handler)
        return self

    async def handle_message(self, payload: dict[str, Any]) -> None:
        """Route one inbound broadcast."""
        logger.debug(f"Handling realtime message: {payload.get('event')}")
        for handler in list(self._message_handlers):
            await _call(handler, payload)

        event = payload.get("event")
        if event == f"client-{self.client_id}":
            for handler in list(self._client_message_handlers):
                await _call(handler, payload)

        if event == f"webhook-init-client-{self.client_id}":
            for handler in list(self._webhook_handlers):
                await _call(handler, payload)

            inner = payload.get("payload")
            if isinstance(inner, dict) and inner.get("type") == "response_initiator":
                for handler in list(self._response_initiator_handlers):
                    await _call(handler, payload)

    async def setup(self) -> None:
        """Start receiving broadcasts."""
        self.channel.on_broadcast(self.handle_message)
        await self.channel.subscribe(self._on_status)

    async def _on_status(self, status: str) -> None:
        if status == SUBSCRIBED:
            logger.info("Connected to realtime channel")
        else:
            logger.warning(f"Realtime subscription status: {status}")

    async def close(self) -> None:
        await self.channel.unsubscribe()


class Realtime:
    """Realtime presence and broadcast for a JarvisClient."""

    def __init__(self, client: JarvisClient, channel_factory: ChannelFactory | None = None):
        self._client = client
        self._channel_factory = channel_factory or self._default_channel
        self.status = "offline"
        self.handler: RealtimeChannelHandler | None = None

    def _default_channel(self, name: str) -> BroadcastChannel:
        config = self._client.get_config()
        if not config.realtime_url or not config.realtime_key:
            raise ConfigurationError(
                "Realtime requires realtime_url and realtime_key "
                "(JARVIS_REALTIME_URL / JARVIS_REALTIME_KEY)"
            )
        return PhoenixBroadcastChannel(config.realtime_url, config.realtime_key, name)

    def _channel_name(self) -> str:
        api_key = self._client.get_config().api_key
        if not api_key:
            raise ConfigurationError("Realtime requires an api_key to name the channel")
        return str(api_key)

    async def update_status(self, online: bool) -> None:
        """Report this client's presence to the API."""
        self.status = "online" if online else "offline"
        response = await self._client.api_request(
            "clients",
            {"op": "update", "client_id": self._client.get_config().client_id, "status": self.status},
            "POST",
        )
        if not response.success:
            logger.warning(f"Failed to update client status: {response.message}")

    async def connect(self) -> RealtimeChannelHandler:
        """Go online and subscribe to this client's channel."""
        channel = self._channel_factory(self._channel_name())
        await self.update_status(True)
        handler = RealtimeChannelHandler(channel, self._client.get_config().client_id)
        await handler.setup()
        self.handler = handler
        return handler

    async def disconnect(self) -> None:
        """Go offline and leave the channel."""
        await self.update_status(False)
        await self.close()

    async def close(self) -> None:
        """Leave the channel without reporting status."""
        if self.handler is not None:
            handler, self.handler = self.handler, None
            await handler.close()

    async def send_message(self, message: dict[str, Any]) -> bool:
        """Broadcast on this client's channel. Returns False on failure."""
        try:
            if self.handler is not None:
                await self.handler.channel.send(message)
                return True

            channel = self._channel_factory(self._channel_name())
            await channel.subscribe()
            try:
                await channel.send(message)
            finally:
                await channel.unsubscribe()
            return True
        except Exception:
            logger.exception("Error sending realtime message")
            return False

    async def test_webhook_trigger(self, client_id: str | None = None) -> bool:
        """Send a response-initiator webhook message to a client (default: this one)."""
        target = client_id or self._client.get_config().client_id
        return await self.send_message(
            {
                "type": "broadcast",
                "event": f"webhook-init-client-{target}",
                "payload": {
                    "type": "response_initiator",
                    "message": "This is a test webhook message.",
                },
            }
        )
