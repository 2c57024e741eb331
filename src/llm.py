"""Claude tool-use helpers for schema-constrained structured output."""

from __future__ import annotations

import json
from typing import Any

from anthropic import Anthropic

from src.config import settings


def get_anthropic_client(timeout: float | None = None) -> Anthropic:
    """Create an Anthropic client bounded by the configured request timeout."""
    return Anthropic(
        api_key=settings.anthropic_api_key,
        timeout=timeout or settings.request_timeout_seconds,
        max_retries=1,
    )


def generate_structured(
    prompt: str,
    *,
    tool_name: str,
    description: str,
    input_schema: dict[str, Any],
    system: str | None = None,
    model: str | None = None,
    client: Anthropic | None = None,
    max_tokens: int = 4096,
    temperature: float | None = None,
) -> dict[str, Any]:
    """Ask Claude for a single forced tool call and return its input.

    The returned dict is untrusted: callers validate it before use.

    Raises:
        ValueError: If the response contains no matching tool_use block.
    """
    if client is None:
        client = get_anthropic_client()

    kwargs: dict[str, Any] = {
        "model": model or settings.llm_model,
        "max_tokens": max_tokens,
        "tools": [
            {"name": tool_name, "description": description, "input_schema": input_schema}
        ],
        "tool_choice": {"type": "tool", "name": tool_name},
        "messages": [{"role": "user", "content": prompt}],
    }
    if system:
        kwargs["system"] = system
    if temperature is not None:
        kwargs["temperature"] = temperature

    response = client.messages.create(**kwargs)
    return _parse_tool_input(response, tool_name)


def _parse_tool_input(response: Any, tool_name: str) -> dict[str, Any]:
    """Extract the input of the named tool_use block from a Claude response."""
    for block in response.content:
        if block.type != "tool_use" or block.name != tool_name:
            continue
        data = block.input
        if isinstance(data, str):
            data = json.loads(data)
        if not isinstance(data, dict):
            raise ValueError(f"Tool input for {tool_name!r} is not an object")
        return data

    raise ValueError(f"No {tool_name!r} tool_use block in Claude response")
