"""Classified stream events.

A StreamEvent is what observers receive. Each event has a category
(what the server sent) and belongs to one observer channel (which callback
list it is delivered to): interim and final responses share the response
channel, interim and final thoughts share the thoughts channel.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .errors import JarvisError

# Scope of a done event that ends the whole session
TOTAL_SCOPE = "*"

# Values of the "type" discriminator that name a done event rather than a scope
_DONE_DISCRIMINATORS = frozenset({"done", "complete"})


class EventCategory(str, Enum):
    """What kind of content an event carries."""

    OUTPUT = "output"
    INTERIM_RESPONSE = "interim_response"
    FINAL_RESPONSE = "final_response"
    INTERIM_THOUGHTS = "interim_thoughts"
    FINAL_THOUGHTS = "final_thoughts"
    TOOL_CALLS = "tool_calls"
    TOOL_CALL = "tool_call"
    MCP_TOOL_CALLS = "mcp_tool_calls"
    MCP_CALL = "mcp_call"
    NLU = "nlu"
    CONVERSATION = "conversation"
    AUDIO_CHUNK = "audio_chunk"
    ERROR = "error"
    DONE = "done"


class ObserverChannel(str, Enum):
    """Callback lists a session keeps, one per registration method."""

    OUTPUT = "output"
    RESPONSE = "response"
    THOUGHTS = "thoughts"
    TOOL_CALLS = "tool_calls"
    TOOL_CALL = "tool_call"
    MCP_TOOL_CALLS = "mcp_tool_calls"
    MCP_CALL = "mcp_call"
    NLU = "nlu"
    CONVERSATION = "conversation"
    AUDIO_CHUNK = "audio_chunk"
    ERROR = "error"
    DONE = "done"


CATEGORY_CHANNELS: dict[EventCategory, ObserverChannel] = {
    EventCategory.OUTPUT: ObserverChannel.OUTPUT,
    EventCategory.INTERIM_RESPONSE: ObserverChannel.RESPONSE,
    EventCategory.FINAL_RESPONSE: ObserverChannel.RESPONSE,
    EventCategory.INTERIM_THOUGHTS: ObserverChannel.THOUGHTS,
    EventCategory.FINAL_THOUGHTS: ObserverChannel.THOUGHTS,
    EventCategory.TOOL_CALLS: ObserverChannel.TOOL_CALLS,
    EventCategory.TOOL_CALL: ObserverChannel.TOOL_CALL,
    EventCategory.MCP_TOOL_CALLS: ObserverChannel.MCP_TOOL_CALLS,
    EventCategory.MCP_CALL: ObserverChannel.MCP_CALL,
    EventCategory.NLU: ObserverChannel.NLU,
    EventCategory.CONVERSATION: ObserverChannel.CONVERSATION,
    EventCategory.AUDIO_CHUNK: ObserverChannel.AUDIO_CHUNK,
    EventCategory.ERROR: ObserverChannel.ERROR,
    EventCategory.DONE: ObserverChannel.DONE,
}

_FINAL_CATEGORIES = frozenset({EventCategory.FINAL_RESPONSE, EventCategory.FINAL_THOUGHTS})


class StreamEvent(BaseModel):
    """One classified event from a stream.

    Attributes:
        category: What the event carries
        value: The payload observers usually want (text, tool call list, ...)
        data: The parsed object the event was extracted from, if any
        error: The error for error events
        scope: Completion scope for done events ("*" ends the session)
        extra: Additional keys sent with a done event
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    category: EventCategory
    value: Any = None
    data: Any = None
    error: JarvisError | None = None
    scope: str | None = None
    extra: dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())

    @property
    def channel(self) -> ObserverChannel:
        return CATEGORY_CHANNELS[self.category]

    @property
    def is_final(self) -> bool:
        """True for final responses and thoughts, False for interim ones."""
        return self.category in _FINAL_CATEGORIES

    @property
    def is_total_completion(self) -> bool:
        return self.category == EventCategory.DONE and self.scope == TOTAL_SCOPE

    # =========================================================================
    # Factory methods
    # =========================================================================

    @classmethod
    def output(cls, content: Any, data: Any = None) -> StreamEvent:
        return cls(category=EventCategory.OUTPUT, value=content, data=data)

    @classmethod
    def response(cls, text: Any, is_final: bool, data: Any = None) -> StreamEvent:
        category = EventCategory.FINAL_RESPONSE if is_final else EventCategory.INTERIM_RESPONSE
        return cls(category=category, value=text, data=data)

    @classmethod
    def thoughts(cls, thoughts: Any, is_final: bool, data: Any = None) -> StreamEvent:
        category = EventCategory.FINAL_THOUGHTS if is_final else EventCategory.INTERIM_THOUGHTS
        return cls(category=category, value=thoughts, data=data)

    @classmethod
    def tool_calls(cls, calls: list[Any], data: Any = None) -> StreamEvent:
        return cls(category=EventCategory.TOOL_CALLS, value=calls, data=data)

    @classmethod
    def tool_call(cls, call: Any, data: Any = None) -> StreamEvent:
        return cls(category=EventCategory.TOOL_CALL, value=call, data=data)

    @classmethod
    def mcp_tool_calls(cls, calls: list[Any], data: Any = None) -> StreamEvent:
        return cls(category=EventCategory.MCP_TOOL_CALLS, value=calls, data=data)

    @classmethod
    def mcp_call(cls, call: Any, data: Any = None) -> StreamEvent:
        return cls(category=EventCategory.MCP_CALL, value=call, data=data)

    @classmethod
    def nlu(cls, result: Any, data: Any = None) -> StreamEvent:
        return cls(category=EventCategory.NLU, value=result, data=data)

    @classmethod
    def conversation(cls, messages: Any, data: Any = None) -> StreamEvent:
        return cls(category=EventCategory.CONVERSATION, value=messages, data=data)

    @classmethod
    def audio_chunk(cls, chunk: Any, data: Any = None) -> StreamEvent:
        return cls(category=EventCategory.AUDIO_CHUNK, value=chunk, data=data)

    @classmethod
    def failure(cls, error: JarvisError, data: Any = None) -> StreamEvent:
        """Create an error event."""
        return cls(category=EventCategory.ERROR, value=str(error), error=error, data=data)

    @classmethod
    def done(cls, raw: Any = None, data: Any = None) -> StreamEvent:
        """Create a done event from whatever the server sent as completion info.

        Booleans, strings and missing values mean total completion. Mappings
        name their scope with "scope" (or the older "type"), may nest it under
        "done", and otherwise default to total completion.
        """
        scope, extra = done_scope(raw)
        return cls(category=EventCategory.DONE, value=scope, scope=scope, extra=extra, data=data)


def done_scope(raw: Any) -> tuple[str, dict[str, Any]]:
    """Split completion info into (scope, extra keys)."""
    if not isinstance(raw, Mapping):
        return TOTAL_SCOPE, {}

    scope = raw.get("scope")
    if scope is not None and scope != "":
        return str(scope), {k: v for k, v in raw.items() if k != "scope"}

    legacy = raw.get("type")
    if isinstance(legacy, str) and legacy and legacy not in _DONE_DISCRIMINATORS:
        return legacy, {k: v for k, v in raw.items() if k != "type"}

    nested = raw.get("done")
    if isinstance(nested, Mapping):
        return done_scope(nested)

    return TOTAL_SCOPE, {k: v for k, v in raw.items() if k != "type"}
