"""End-to-end tests: client -> stream -> HTTP -> observers.

Uses an httpx mock transport that behaves like the streaming endpoint:
it checks the api key, echoes the input and emits frames in small chunks.
"""

from __future__ import annotations

import asyncio
import json
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from jarvis_client import EventCategory, JarvisClient, JarvisConfig, StreamEvent

pytestmark = pytest.mark.integration

API_KEY = "test-key"


def chunked(text: str, size: int) -> list[bytes]:
    raw = text.encode()
    return [raw[i : i + size] for i in range(0, len(raw), size)]


def jarvis_frames(input_text: str) -> str:
    frames = [
        {"interrim_thoughts": "considering"},
        {"interrim_response": input_text[:2]},
        {"nlu": {"intent": "echo"}},
        {"tool_calls": [{"name": "echo", "arguments": {"text": input_text}}]},
        {"done": {"scope": "tools"}},
        {"thoughts": "echoing", "response": f"You said: {input_text}"},
        {"convo": [{"role": "assistant", "content": input_text}]},
    ]
    body = "".join(f"data: {json.dumps(frame)}\n\n" for frame in frames)
    return body + "data: [DONE]\n\ndata: {\"response\": \"ignored\"}\n\n"


async def jarvis_endpoint(request: httpx.Request) -> httpx.Response:
    if request.method == "GET":
        query = {k: v[0] for k, v in parse_qs(urlsplit(str(request.url)).query).items()}
        key = query.get("key")
        input_text = query.get("input", "")
    else:
        body = json.loads(request.content)
        key = request.headers.get("authorization", "").removeprefix("Bearer ")
        input_text = body.get("input", "")

    if key != API_KEY:
        return httpx.Response(401, text="invalid api key")

    async def body_stream():
        for chunk in chunked(jarvis_frames(input_text), 7):
            await asyncio.sleep(0)
            yield chunk

    return httpx.Response(
        200, headers={"content-type": "text/event-stream"}, content=body_stream()
    )


@pytest.fixture
def client() -> JarvisClient:
    return JarvisClient(
        JarvisConfig(base_url="http://jarvis.test/api", api_key=API_KEY),
        transport=httpx.MockTransport(jarvis_endpoint),
    )


class TestStreamOverHttp:
    """Full streaming sessions through the client."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("post", [False, True])
    async def test_full_session(self, client: JarvisClient, post: bool) -> None:
        builder = client.jarvis.stream_post if post else client.jarvis.stream
        stream = builder.jarvis("héllo wörld", speech=False)
        seen: list[StreamEvent] = []
        for register in (
            stream.on_response,
            stream.on_thoughts,
            stream.on_nlu,
            stream.on_tool_calls,
            stream.on_tool_call,
            stream.on_conversation,
            stream.on_error,
            stream.on_done,
        ):
            register(seen.append)

        await stream.start()

        assert [e.category for e in seen] == [
            EventCategory.INTERIM_THOUGHTS,
            EventCategory.INTERIM_RESPONSE,
            EventCategory.NLU,
            EventCategory.TOOL_CALLS,
            EventCategory.TOOL_CALL,
            EventCategory.DONE,
            EventCategory.FINAL_THOUGHTS,
            EventCategory.FINAL_RESPONSE,
            EventCategory.CONVERSATION,
            EventCategory.DONE,
        ]
        assert seen[7].value == "You said: héllo wörld"
        assert seen[4].value == {"name": "echo", "arguments": {"text": "héllo wörld"}}
        assert seen[5].scope == "tools"
        assert seen[-1].is_total_completion
        assert stream.completed_scopes == ("tools",)
        await client.close()

    @pytest.mark.asyncio
    async def test_bad_key_reports_error(self) -> None:
        client = JarvisClient(
            JarvisConfig(base_url="http://jarvis.test/api", api_key="wrong"),
            transport=httpx.MockTransport(jarvis_endpoint),
        )
        stream = client.jarvis.stream.jarvis("hi")
        errors: list[StreamEvent] = []
        done: list[StreamEvent] = []
        stream.on_error(errors.append).on_done(done.append)

        await stream.start()

        assert len(errors) == 1
        assert errors[0].error.status_code == 401
        assert "invalid api key" in errors[0].value
        assert done == []
        await client.close()

    @pytest.mark.asyncio
    async def test_concurrent_streams(self, client: JarvisClient) -> None:
        """Independent sessions from one client do not share state."""
        results: dict[str, list[str]] = {"a": [], "b": []}
        streams = []
        for name in results:
            stream = client.jarvis.stream.jarvis(name)
            stream.on_response(
                lambda e, name=name: results[name].append(e.value) if e.is_final else None
            )
            streams.append(stream)

        await asyncio.gather(*(s.start() for s in streams))

        assert results == {"a": ["You said: a"], "b": ["You said: b"]}
        await client.close()


class TestReferenceExchange:
    """The documented request/response exchange."""

    @pytest.mark.asyncio
    async def test_interim_then_final_with_done(self, sse_transport) -> None:
        transport, requests = sse_transport(
            [
                'data: {"interrim_response":"H"}\n\n',
                'data: {"response":"Hi there","done":{"scope":"*"}}\n\n',
                'data: {"response":"never delivered"}\n\n',
            ]
        )
        client = JarvisClient(
            JarvisConfig(base_url="http://jarvis.test/api", api_key="k"), transport=transport
        )
        stream = client.jarvis.stream.jarvis("hi")
        seen: list[tuple[EventCategory, object]] = []
        stream.on_response(lambda e: seen.append((e.category, e.value)))
        stream.on_done(lambda e: seen.append((e.category, e.scope)))

        await stream.start()

        assert "?key=k&input=hi&stream=true" in str(requests[0].url)
        assert seen == [
            (EventCategory.INTERIM_RESPONSE, "H"),
            (EventCategory.FINAL_RESPONSE, "Hi there"),
            (EventCategory.DONE, "*"),
        ]
        assert not stream.is_running
        await client.close()
