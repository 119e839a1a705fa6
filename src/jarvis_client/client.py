"""Jarvis API client.

Entry point for both request/response calls and streaming sessions:

    async with JarvisClient(JarvisConfig(api_key="...")) as client:
        reply = await client.jarvis.jarvis("hello")

        stream = client.jarvis.stream.jarvis("hello", speech=True)
        stream.on_response(print_response).on_done(finish)
        await stream.start()
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any
from urllib.parse import quote

import httpx

from .auth import TokenCache, auth_headers
from .config import JarvisConfig
from .errors import JarvisError, RequestTimeoutError, TransportError, TransportErrorKind
from .realtime import ChannelFactory, Realtime
from .stream import JarvisStream
from .transport import TransportFetcher
from .types import JarvisResponse, NLUResponse, TTSResponse

logger = logging.getLogger(__name__)

# Characters encodeURIComponent leaves alone beyond the unreserved set
_URI_COMPONENT_SAFE = "!~*'()"


def encode_component(text: str) -> str:
    """Percent-encode like JavaScript's encodeURIComponent."""
    return quote(text, safe=_URI_COMPONENT_SAFE)


def stringify_param(value: Any) -> str:
    """Render a query parameter value the way the server expects."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# =============================================================================
# Streaming request builders
# =============================================================================


@dataclass
class JarvisStreamRequest:
    """Builds streaming sessions for the streaming endpoints."""

    _client: JarvisClient
    method: str = "GET"

    def jarvis(self, input_text: str, **options: Any) -> JarvisStream:
        """Stream an assistant reply.

        Common options: interrim, speech, model, convo_updates, save, pa, nlu,
        nlu_config, lat, lon, media, dt. Unknown options are passed through.
        """
        payload = {"input": input_text, **options, "stream": True}
        return self._client.create_stream("/new-jarvis-stream", payload, method=self.method)

    def tts(self, text: str, **options: Any) -> JarvisStream:
        """Stream synthesized speech (voice, speed, format, ...)."""
        payload = {"text": text, "stream": True, **options}
        return self._client.create_stream("/tts/stream", payload, method=self.method)

    def nlu(self, query: str, **options: Any) -> JarvisStream:
        """Stream an NLU result (includeEntities, context, ...)."""
        payload = {"query": query, "stream": True, **options}
        return self._client.create_stream("/nlu/stream", payload, method=self.method)


@dataclass
class JarvisRequest:
    """Jarvis endpoints, streaming and non-streaming."""

    _client: JarvisClient

    @property
    def stream(self) -> JarvisStreamRequest:
        """Streaming requests over GET with query parameters."""
        return JarvisStreamRequest(self._client)

    @property
    def stream_post(self) -> JarvisStreamRequest:
        """Streaming requests over POST with a JSON body."""
        return JarvisStreamRequest(self._client, method="POST")

    async def jarvis(self, input_text: str, **options: Any) -> JarvisResponse:
        """Non-streaming assistant request."""
        return await self._client.api_request(
            "new-jarvis-stream", {"input": input_text, **options}
        )


# =============================================================================
# Request creation endpoints
# =============================================================================


@dataclass
class RequestKindAPI:
    """POST /requests/<kind>/create."""

    _client: JarvisClient
    kind: str
    field: str

    async def create(self, value: str, **params: Any) -> Any:
        """Create a request and return the decoded JSON response.

        Raises:
            TransportError: On HTTP or network failure
        """
        response = await self._client.make_request(
            "POST", f"/requests/{self.kind}/create", {self.field: value, **params}
        )
        return response.json()


@dataclass
class RequestsAPI:
    """Request creation endpoints."""

    _client: JarvisClient

    @property
    def input(self) -> RequestKindAPI:
        return RequestKindAPI(self._client, "input", "input")

    @property
    def tts(self) -> RequestKindAPI:
        return RequestKindAPI(self._client, "tts", "text")

    @property
    def nlu(self) -> RequestKindAPI:
        return RequestKindAPI(self._client, "nlu", "text")


# =============================================================================
# Client
# =============================================================================


class JarvisClient:
    """Client for the Jarvis conversational API."""

    def __init__(
        self,
        config: JarvisConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        token_cache: TokenCache | None = None,
        channel_factory: ChannelFactory | None = None,
    ):
        self._config = config or JarvisConfig.from_env()
        self._transport = transport
        self.token_cache = token_cache or TokenCache()
        self._http_client: httpx.AsyncClient | None = None

        self.jarvis = JarvisRequest(self)
        self.requests = RequestsAPI(self)
        self.realtime = Realtime(self, channel_factory=channel_factory)

    @property
    def base_url(self) -> str:
        return self._config.base_url

    def get_config(self) -> JarvisConfig:
        """Return a copy of the current configuration."""
        return replace(self._config)

    def update_config(self, **changes: Any) -> None:
        """Replace configuration fields (base_url, api_key, timeout, ...)."""
        self._config = self._config.merged(**changes)
        if self._http_client is not None and "timeout" in changes:
            self._http_client.timeout = httpx.Timeout(self._config.timeout)

    # =========================================================================
    # Streaming
    # =========================================================================

    def build_stream_url(self, endpoint: str, data: Mapping[str, Any]) -> str:
        """URL for a GET stream: payload as query parameters plus the api key."""
        url = f"{self.base_url}{endpoint}?key={encode_component(self._config.api_key or '')}"
        for key, value in data.items():
            if value is None:
                continue
            url += f"&{encode_component(str(key))}={encode_component(stringify_param(value))}"

        logger.debug(f"Built stream URL: {url}")
        return url

    def create_stream(
        self, endpoint: str, data: Mapping[str, Any], method: str = "GET"
    ) -> JarvisStream:
        """Create (but do not start) a streaming session."""
        method = method.upper()
        fetcher = TransportFetcher(timeout=self._config.timeout, transport=self._transport)

        if method == "GET":
            url = self.build_stream_url(endpoint, data)
            return JarvisStream(fetcher, url, method=method, payload=dict(data))

        return JarvisStream(
            fetcher,
            f"{self.base_url}{endpoint}",
            method=method,
            payload={k: v for k, v in data.items() if v is not None},
            auth=self._auth_headers,
        )

    # =========================================================================
    # Request / response
    # =========================================================================

    async def _auth_headers(self) -> dict[str, str]:
        return await auth_headers(self._config, self.token_cache)

    def _ensure_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                transport=self._transport,
                timeout=httpx.Timeout(self._config.timeout),
            )
        return self._http_client

    async def make_request(
        self, method: str, endpoint: str, data: Any = None
    ) -> httpx.Response:
        """Send one JSON request with a hard timeout.

        Raises:
            RequestTimeoutError: If the request exceeds config.timeout
            TransportError: On non-2xx status or network failure
        """
        url = f"{self.base_url}{endpoint}"
        headers = {"Content-Type": "application/json", **await self._auth_headers()}
        client = self._ensure_http_client()
        timeout = self._config.timeout

        try:
            response = await asyncio.wait_for(
                client.request(method, url, json=data, headers=headers),
                timeout=timeout,
            )
        except (TimeoutError, httpx.TimeoutException) as e:
            raise RequestTimeoutError(timeout) from e
        except httpx.RequestError as e:
            raise TransportError(f"Network error: {e}", kind=TransportErrorKind.NETWORK) from e

        if not response.is_success:
            raise TransportError(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                kind=TransportErrorKind.HTTP_STATUS,
                status_code=response.status_code,
            )
        return response

    async def api_request(
        self, endpoint: str, data: Any = None, method: str = "POST"
    ) -> JarvisResponse:
        """General API request. Failures are reported in the response, not raised."""
        try:
            response = await self.make_request(method, f"/{endpoint.lstrip('/')}", data)
            return JarvisResponse(
                success=True,
                data=response.json(),
                status_code=response.status_code,
                message="Request completed successfully",
            )
        except (JarvisError, ValueError) as e:
            status = e.status_code if isinstance(e, TransportError) and e.status_code else 500
            logger.warning(f"API request to {endpoint} failed: {e}")
            return JarvisResponse(success=False, message=str(e) or "Request failed", status_code=status)

    async def gen_tts(self, text: str) -> TTSResponse:
        """Generate text-to-speech audio."""
        try:
            response = await self.make_request("POST", "/tts", {"text": text, "format": "wav"})
            data = response.json()
        except (JarvisError, ValueError) as e:
            return TTSResponse(success=False, message=str(e) or "TTS generation failed")

        data = data if isinstance(data, dict) else {}
        return TTSResponse(
            success=True,
            audio_url=data.get("audioUrl"),
            audio_data=data.get("audioData"),
            message=data.get("message") or "TTS generated successfully",
        )

    async def request_nlu(self, query: str) -> NLUResponse:
        """Run natural language understanding on a query."""
        try:
            response = await self.make_request(
                "POST", "/nlu", {"query": query, "includeEntities": True}
            )
            data = response.json()
        except (JarvisError, ValueError) as e:
            return NLUResponse(success=False, message=str(e) or "NLU processing failed")

        data = data if isinstance(data, dict) else {}
        return NLUResponse(
            success=True,
            intent=data.get("intent"),
            entities=data.get("entities"),
            confidence=data.get("confidence"),
            message=data.get("message") or "NLU processing completed",
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def close(self) -> None:
        """Close the HTTP client and any realtime connection."""
        try:
            await self.realtime.close()
        finally:
            if self._http_client is not None:
                await self._http_client.aclose()
                self._http_client = None

    async def __aenter__(self) -> JarvisClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
