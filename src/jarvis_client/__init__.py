"""Jarvis client - HTTP and streaming client for the Jarvis conversational API.

Streaming sessions decode the server's event stream, classify each payload
(responses, thoughts, tool calls, NLU results, audio chunks, errors,
completion) and dispatch it to registered observers.
"""

from .auth import TokenCache, TokenGrant, auth_headers
from .classifier import FIELD_RULES, TYPE_RULES, FieldRule, classify, classify_object
from .client import (
    JarvisClient,
    JarvisRequest,
    JarvisStreamRequest,
    RequestKindAPI,
    RequestsAPI,
)
from .config import JarvisConfig
from .dispatcher import ObserverRegistry
from .errors import (
    ApplicationError,
    ConfigurationError,
    JarvisError,
    ParseError,
    ProtocolError,
    RequestTimeoutError,
    StreamStateError,
    TransportError,
    TransportErrorKind,
)
from .events import TOTAL_SCOPE, EventCategory, ObserverChannel, StreamEvent
from .frames import Frame, FrameDecoder
from .realtime import (
    BroadcastChannel,
    ChannelState,
    PhoenixBroadcastChannel,
    Realtime,
    RealtimeChannelHandler,
)
from .stream import JarvisStream, SessionState
from .transport import CancelSignal, FetchResult, TransportFetcher
from .types import JarvisResponse, MCPCall, NLUResponse, ToolCall, TTSResponse

__all__ = [
    # Client
    "JarvisClient",
    "JarvisConfig",
    "JarvisRequest",
    "JarvisStreamRequest",
    "RequestsAPI",
    "RequestKindAPI",
    # Streaming
    "JarvisStream",
    "SessionState",
    "StreamEvent",
    "EventCategory",
    "ObserverChannel",
    "ObserverRegistry",
    "TOTAL_SCOPE",
    "Frame",
    "FrameDecoder",
    "FieldRule",
    "FIELD_RULES",
    "TYPE_RULES",
    "classify",
    "classify_object",
    "CancelSignal",
    "FetchResult",
    "TransportFetcher",
    # Auth
    "TokenCache",
    "TokenGrant",
    "auth_headers",
    # Realtime
    "Realtime",
    "RealtimeChannelHandler",
    "BroadcastChannel",
    "PhoenixBroadcastChannel",
    "ChannelState",
    # Types
    "JarvisResponse",
    "TTSResponse",
    "NLUResponse",
    "ToolCall",
    "MCPCall",
    # Errors
    "JarvisError",
    "TransportError",
    "TransportErrorKind",
    "RequestTimeoutError",
    "ParseError",
    "ProtocolError",
    "ApplicationError",
    "StreamStateError",
    "ConfigurationError",
]
