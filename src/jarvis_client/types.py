"""Response and payload models for the non-streaming API."""

from typing import Any

from pydantic import BaseModel, Field


class JarvisResponse(BaseModel):
    """Envelope returned by api_request()."""

    success: bool
    data: Any = None
    message: str | None = None
    status_code: int | None = None


class TTSResponse(BaseModel):
    """Text-to-speech result."""

    success: bool
    audio_url: str | None = None
    audio_data: Any = None
    message: str | None = None


class NLUResponse(BaseModel):
    """Natural language understanding result."""

    success: bool
    intent: str | None = None
    entities: dict[str, Any] | None = None
    confidence: float | None = None
    message: str | None = None


class ToolCall(BaseModel):
    """A tool invocation as sent in tool_calls arrays."""

    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    id: str | None = None


class MCPCall(BaseModel):
    """An external (MCP) tool invocation."""

    server: str
    method: str
    params: dict[str, Any] = Field(default_factory=dict)
    id: str | None = None
