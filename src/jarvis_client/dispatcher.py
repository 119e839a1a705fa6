"""Observer registry for stream events."""

from __future__ import annotations

import inspect
from collections.abc import Callable
from typing import Any

from .events import ObserverChannel, StreamEvent

# Callbacks may be plain functions or coroutine functions
Observer = Callable[[StreamEvent], Any]


class ObserverRegistry:
    """Ordered callback lists, one per observer channel.

    Callbacks run in registration order. A callback that returns an
    awaitable is awaited before the next callback runs. Exceptions raised by
    a callback are not caught.
    """

    def __init__(self) -> None:
        self._observers: dict[ObserverChannel, list[Observer]] = {
            channel: [] for channel in ObserverChannel
        }

    def register(self, channel: ObserverChannel | str, callback: Observer) -> ObserverRegistry:
        if not callable(callback):
            raise TypeError(f"Observer for {channel} must be callable, got {callback!r}")
        self._observers[ObserverChannel(channel)].append(callback)
        return self

    def count(self, channel: ObserverChannel | str) -> int:
        return len(self._observers[ObserverChannel(channel)])

    async def dispatch(self, event: StreamEvent) -> None:
        # Copy so a callback registering another callback does not affect this dispatch
        for callback in list(self._observers[event.channel]):
            result = callback(event)
            if inspect.isawaitable(result):
                await result
