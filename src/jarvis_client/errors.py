"""Exception hierarchy for the Jarvis client.

Transport and protocol failures abort a stream's read loop. Parse and
application errors are reported to observers and the loop keeps going.
"""

from __future__ import annotations

from enum import Enum


class JarvisError(Exception):
    """Base class for every error raised by the client."""


class TransportErrorKind(str, Enum):
    """What went wrong at the HTTP layer."""

    HTTP_STATUS = "http_status"
    TIMEOUT = "timeout"
    NETWORK = "network"


class TransportError(JarvisError):
    """Non-2xx status, timeout or network failure."""

    def __init__(
        self,
        message: str,
        kind: TransportErrorKind = TransportErrorKind.NETWORK,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


class RequestTimeoutError(TransportError):
    """A non-streaming request exceeded the configured timeout."""

    def __init__(self, timeout: float):
        super().__init__(
            f"Request timed out after {timeout}s",
            kind=TransportErrorKind.TIMEOUT,
        )
        self.timeout = timeout


class ParseError(JarvisError):
    """A frame payload was not valid JSON."""

    def __init__(self, message: str, payload: str):
        super().__init__(message)
        self.payload = payload


class ProtocolError(JarvisError):
    """The server answered without a body that can be streamed."""


class ApplicationError(JarvisError):
    """The server reported an error inside an otherwise valid payload."""

    def __init__(self, message: str, data: dict | None = None):
        super().__init__(message)
        self.data = data


class StreamStateError(JarvisError, RuntimeError):
    """start() was called on a session that is running or already used."""


class ConfigurationError(JarvisError, ValueError):
    """Invalid or missing client configuration."""
