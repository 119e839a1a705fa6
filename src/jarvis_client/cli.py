"""Jarvis command line client.

Usage:
    jarvis-client stream "hello"                   # Stream a reply
    jarvis-client stream "hello" -o speech=true    # Pass stream options
    jarvis-client stream "hello" --format json     # One JSON event per line
    jarvis-client ask "hello"                      # Non-streaming request
    jarvis-client tts "hello"                      # Text to speech
    jarvis-client nlu "turn on the lights"         # NLU
    jarvis-client config                           # Show configuration

Settings come from options first, then JARVIS_* environment variables.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any

import click
from pydantic import BaseModel, ValidationError

from .client import JarvisClient
from .config import JarvisConfig
from .errors import ConfigurationError, JarvisError
from .events import ObserverChannel, StreamEvent
from .types import MCPCall, ToolCall

# Output format options
FORMAT_TEXT = "text"
FORMAT_JSON = "json"


def mask(secret: str | None) -> str:
    """Mask a secret for display."""
    if not secret:
        return "(not set)"
    if len(secret) <= 4:
        return "****"
    return f"{secret[:2]}{'*' * (len(secret) - 4)}{secret[-2:]}"


def parse_options(pairs: tuple[str, ...]) -> dict[str, Any]:
    """Parse key=value pairs; values that are valid JSON are decoded."""
    options: dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"Expected key=value, got {pair!r}", param_hint="--option")
        try:
            options[key] = json.loads(raw)
        except json.JSONDecodeError:
            options[key] = raw
    return options


def event_to_json(event: StreamEvent) -> str:
    payload = event.model_dump(mode="json", exclude={"error", "data"})
    payload["channel"] = event.channel.value
    payload["is_final"] = event.is_final
    return json.dumps(payload, ensure_ascii=False)


def describe_tool_call(call: Any) -> str:
    try:
        tool = ToolCall.model_validate(call)
    except ValidationError:
        return json.dumps(call, ensure_ascii=False)
    return f"{tool.name}({json.dumps(tool.arguments, ensure_ascii=False)})"


def describe_mcp_call(call: Any) -> str:
    try:
        mcp = MCPCall.model_validate(call)
    except ValidationError:
        return json.dumps(call, ensure_ascii=False)
    return f"{mcp.server}.{mcp.method}({json.dumps(mcp.params, ensure_ascii=False)})"


def echo_model(model: BaseModel) -> None:
    click.echo(model.model_dump_json(indent=2))


def _echo_mcp_calls(event: StreamEvent) -> None:
    for call in event.value:
        click.echo(f"[mcp] {describe_mcp_call(call)}")


@click.group()
@click.option("--base-url", help="API base URL (env: JARVIS_BASE_URL)")
@click.option("--api-key", help="API key (env: JARVIS_API_KEY)")
@click.option("--timeout", type=float, help="Request timeout in seconds (env: JARVIS_TIMEOUT)")
@click.option("--verbose", "-v", is_flag=True, help="Log debug output to stderr")
@click.pass_context
def main(
    ctx: click.Context,
    base_url: str | None,
    api_key: str | None,
    timeout: float | None,
    verbose: bool,
) -> None:
    """Jarvis client - talk to the Jarvis conversational API."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            stream=sys.stderr,
        )

    try:
        ctx.obj = JarvisConfig.from_env(base_url=base_url, api_key=api_key, timeout=timeout)
    except ConfigurationError as e:
        raise click.UsageError(str(e)) from e


@main.command()
@click.argument("input_text")
@click.option("--post", is_flag=True, help="Send the request as a POST with a JSON body")
@click.option("--option", "-o", "options", multiple=True, help="Stream option as key=value")
@click.option("--show-thoughts", is_flag=True, help="Print final reasoning")
@click.option(
    "--format",
    "output_format",
    type=click.Choice([FORMAT_TEXT, FORMAT_JSON]),
    default=FORMAT_TEXT,
    help="Output format",
)
@click.pass_obj
def stream(
    config: JarvisConfig,
    input_text: str,
    post: bool,
    options: tuple[str, ...],
    show_thoughts: bool,
    output_format: str,
) -> None:
    """Stream a reply to INPUT_TEXT."""
    parsed = parse_options(options)
    try:
        failed = asyncio.run(
            _run_stream(config, input_text, post, parsed, show_thoughts, output_format)
        )
    except JarvisError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    if failed:
        sys.exit(1)


async def _run_stream(
    config: JarvisConfig,
    input_text: str,
    post: bool,
    options: dict[str, Any],
    show_thoughts: bool,
    output_format: str,
) -> bool:
    """Run one stream; returns True if an error event was seen."""
    errors: list[StreamEvent] = []

    async with JarvisClient(config) as client:
        builder = client.jarvis.stream_post if post else client.jarvis.stream
        session = builder.jarvis(input_text, **options)
        session.on_error(errors.append)

        if output_format == FORMAT_JSON:
            for channel in ObserverChannel:
                session.on(channel, lambda e: click.echo(event_to_json(e)))
        else:
            session.on_output(lambda e: click.echo(e.value))
            session.on_response(lambda e: click.echo(e.value) if e.is_final else None)
            session.on_tool_call(lambda e: click.echo(f"[tool] {describe_tool_call(e.value)}"))
            session.on_mcp_tool_calls(_echo_mcp_calls)
            session.on_mcp_call(lambda e: click.echo(f"[mcp] {describe_mcp_call(e.value)}"))
            session.on_error(lambda e: click.echo(f"Error: {e.value}", err=True))
            if show_thoughts:
                session.on_thoughts(
                    lambda e: click.echo(f"[thoughts] {e.value}") if e.is_final else None
                )

        await session.start()

    return bool(errors)


@main.command()
@click.argument("input_text")
@click.option("--option", "-o", "options", multiple=True, help="Request option as key=value")
@click.pass_obj
def ask(config: JarvisConfig, input_text: str, options: tuple[str, ...]) -> None:
    """Send INPUT_TEXT without streaming and print the JSON response."""
    parsed = parse_options(options)

    async def run() -> bool:
        async with JarvisClient(config) as client:
            response = await client.jarvis.jarvis(input_text, **parsed)
        echo_model(response)
        return response.success

    if not asyncio.run(run()):
        sys.exit(1)


@main.command()
@click.argument("text")
@click.pass_obj
def tts(config: JarvisConfig, text: str) -> None:
    """Generate speech for TEXT."""

    async def run() -> bool:
        async with JarvisClient(config) as client:
            response = await client.gen_tts(text)
        echo_model(response)
        return response.success

    if not asyncio.run(run()):
        sys.exit(1)


@main.command()
@click.argument("query")
@click.pass_obj
def nlu(config: JarvisConfig, query: str) -> None:
    """Run natural language understanding on QUERY."""

    async def run() -> bool:
        async with JarvisClient(config) as client:
            response = await client.request_nlu(query)
        echo_model(response)
        return response.success

    if not asyncio.run(run()):
        sys.exit(1)


@main.command("config")
@click.pass_obj
def show_config(config: JarvisConfig) -> None:
    """Show the resolved configuration."""
    click.echo(f"base_url:     {config.base_url}")
    click.echo(f"api_key:      {mask(config.api_key)}")
    click.echo(f"timeout:      {config.timeout}s")
    click.echo(f"client_id:    {config.client_id or '(not set)'}")
    click.echo(f"realtime_url: {config.realtime_url or '(not set)'}")


if __name__ == "__main__":
    main()
