"""Maps frame payloads to classified stream events.

Two independent rule sets run over every parsed object:

1. FIELD_RULES, in table order. Each rule checks whether its field is
   present and emits events; any number of rules may fire for one object.
2. TYPE_RULES, keyed by the object's "type" field.

Both sets always run, so an object such as
``{"type": "response", "response": "hi"}`` reaches response observers twice.
Upstream payload shapes rely on either form.

Presence follows the server's JavaScript truthiness: None, False, 0 and ""
are absent; empty lists and objects are present.
"""

from __future__ import annotations

import json
import logging
import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from .errors import ApplicationError, ParseError
from .events import StreamEvent
from .frames import DONE_SENTINELS

logger = logging.getLogger(__name__)

UNKNOWN_ERROR = "Unknown error"

EventBuilder = Callable[[Any, Mapping[str, Any]], list[StreamEvent]]
TypeBuilder = Callable[[Mapping[str, Any]], list[StreamEvent]]


def is_present(value: Any) -> bool:
    """JavaScript-style truthiness."""
    if value is None or value is False:
        return False
    if isinstance(value, bool):
        return True
    if isinstance(value, (int, float)):
        return value != 0 and not (isinstance(value, float) and math.isnan(value))
    if isinstance(value, str):
        return value != ""
    return True


def first_present(obj: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    """Value of the first present key, like ``a || b || default``."""
    for key in keys:
        value = obj.get(key)
        if is_present(value):
            return value
    return default


def _error_message(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, Mapping):
        message = value.get("message")
        if is_present(message):
            return str(message)
    return UNKNOWN_ERROR


# =============================================================================
# Field-presence rules
# =============================================================================


@dataclass(frozen=True)
class FieldRule:
    """Fires when any of ``fields`` is present; the first present value wins."""

    fields: tuple[str, ...]
    build: EventBuilder

    def apply(self, obj: Mapping[str, Any]) -> list[StreamEvent]:
        for name in self.fields:
            value = obj.get(name)
            if is_present(value):
                return self.build(value, obj)
        return []


def _tool_calls(value: Any, obj: Mapping[str, Any]) -> list[StreamEvent]:
    if not isinstance(value, list):
        return []
    events = [StreamEvent.tool_calls(value, obj)]
    events.extend(StreamEvent.tool_call(call, obj) for call in value)
    return events


def _mcp_tool_calls(value: Any, obj: Mapping[str, Any]) -> list[StreamEvent]:
    if not isinstance(value, list):
        return []
    return [StreamEvent.mcp_tool_calls(value, obj)]


def _error(value: Any, obj: Mapping[str, Any]) -> list[StreamEvent]:
    return [StreamEvent.failure(ApplicationError(_error_message(value), dict(obj)), obj)]


def _done(value: Any, obj: Mapping[str, Any]) -> list[StreamEvent]:
    done = obj.get("done")
    raw = done if isinstance(done, Mapping) else None
    return [StreamEvent.done(raw, obj)]


FIELD_RULES: list[FieldRule] = [
    FieldRule(("interrim_response",), lambda v, o: [StreamEvent.response(v, False, o)]),
    FieldRule(("interrim_thoughts",), lambda v, o: [StreamEvent.thoughts(v, False, o)]),
    FieldRule(("tool_calls",), _tool_calls),
    FieldRule(("mcp_tool_calls",), _mcp_tool_calls),
    FieldRule(("thoughts",), lambda v, o: [StreamEvent.thoughts(v, True, o)]),
    FieldRule(("response",), lambda v, o: [StreamEvent.response(v, True, o)]),
    # NLU observers get the whole object: {"nlu": {"result": ...}}
    FieldRule(("nlu",), lambda v, o: [StreamEvent.nlu(o, o)]),
    FieldRule(("convo",), lambda v, o: [StreamEvent.conversation(v, o)]),
    FieldRule(("audio_chunk",), lambda v, o: [StreamEvent.audio_chunk(v, o)]),
    FieldRule(("content", "text", "message"), lambda v, o: [StreamEvent.output(v, o)]),
    FieldRule(("error",), _error),
    FieldRule(("done", "finished", "complete"), _done),
]


# =============================================================================
# "type" discriminator rules
# =============================================================================


def _typed_output(o: Mapping[str, Any]) -> list[StreamEvent]:
    return [StreamEvent.output(first_present(o, "content", "text", default=""), o)]


def _typed_tool_calls(o: Mapping[str, Any]) -> list[StreamEvent]:
    calls = o.get("data")
    return [StreamEvent.tool_calls(calls, o)] if isinstance(calls, list) else []


def _typed_mcp_tool_calls(o: Mapping[str, Any]) -> list[StreamEvent]:
    calls = o.get("data")
    return [StreamEvent.mcp_tool_calls(calls, o)] if isinstance(calls, list) else []


def _typed_error(o: Mapping[str, Any]) -> list[StreamEvent]:
    message = first_present(o, "content", "message", default=UNKNOWN_ERROR)
    return [StreamEvent.failure(ApplicationError(str(message), dict(o)), o)]


def _typed_done(o: Mapping[str, Any]) -> list[StreamEvent]:
    return [StreamEvent.done(first_present(o, "data", default=o), o)]


TYPE_RULES: dict[str, TypeBuilder] = {
    "output": _typed_output,
    "text": _typed_output,
    "content": _typed_output,
    "interrim_response": lambda o: [
        StreamEvent.response(first_present(o, "content", "data", default=""), False, o)
    ],
    "interrim_thoughts": lambda o: [
        StreamEvent.thoughts(first_present(o, "data", "content"), False, o)
    ],
    "tool_calls": _typed_tool_calls,
    "mcp_tool_calls": _typed_mcp_tool_calls,
    "tool_call": lambda o: [StreamEvent.tool_call(first_present(o, "data", default=o), o)],
    "mcp_call": lambda o: [StreamEvent.mcp_call(first_present(o, "data", default=o), o)],
    "thoughts": lambda o: [StreamEvent.thoughts(first_present(o, "data", default=o), True, o)],
    "response": lambda o: [
        StreamEvent.response(first_present(o, "content", "data", default=""), True, o)
    ],
    "nlu": lambda o: [StreamEvent.nlu(first_present(o, "data", default=o), o)],
    "conversation": lambda o: [
        StreamEvent.conversation(first_present(o, "data", "convo", "conversation", default=[]), o)
    ],
    "audio_chunk": lambda o: [
        StreamEvent.audio_chunk(first_present(o, "data", "audio_chunk", "content", default=""), o)
    ],
    "error": _typed_error,
    "done": _typed_done,
    "complete": _typed_done,
}


# =============================================================================
# Entry points
# =============================================================================


def parse_payload(payload: str) -> dict[str, Any]:
    """Parse a frame payload as a JSON object.

    Raises:
        ParseError: If the payload is not JSON or not a JSON object
    """
    try:
        parsed = json.loads(payload)
    except (json.JSONDecodeError, ValueError) as e:
        raise ParseError(f"Invalid JSON payload: {e}", payload) from e
    if not isinstance(parsed, dict):
        raise ParseError(f"Expected a JSON object, got {type(parsed).__name__}", payload)
    return parsed


def classify_object(obj: Mapping[str, Any]) -> list[StreamEvent]:
    """Run both rule sets over a parsed object."""
    events: list[StreamEvent] = []
    for rule in FIELD_RULES:
        events.extend(rule.apply(obj))

    discriminator = obj.get("type")
    if is_present(discriminator) and isinstance(discriminator, str):
        build = TYPE_RULES.get(discriminator)
        if build is not None:
            events.extend(build(obj))
    return events


def classify(payload: str) -> list[StreamEvent]:
    """Turn one frame payload into zero or more events.

    The completion sentinels short-circuit to a total done event. Payloads
    that are not JSON objects become a single output event carrying the raw
    text, so non-JSON content is never dropped.
    """
    if payload in DONE_SENTINELS:
        return [StreamEvent.done()]

    try:
        obj = parse_payload(payload)
    except ParseError as e:
        logger.warning(f"Failed to parse SSE data: {payload[:100]!r} ({e})")
        if payload.strip():
            return [StreamEvent.output(payload)]
        return []

    return classify_object(obj)
