"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: it exists to prevent test suites from
growing lots of one-off adapter subclasses as coverage expands.
"""

from __future__ import annotations

import copy
from typing import Any

from castor.config import FallbackCandidate
from castor.fallback import ProviderBinding
from castor.providers.mock import MockAdapter


def text_response(
    text: str, *, input_tokens: int = 10, output_tokens: int = 5, model: str = "m"
) -> dict[str, Any]:
    """A mock-protocol response with plain text."""
    return {
        "model": model,
        "text": text,
        "usage": {
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": input_tokens + output_tokens,
        },
    }


def tool_response(
    *calls: tuple[str, dict[str, Any]] | tuple[str, dict[str, Any], str],
    text: str | None = None,
) -> dict[str, Any]:
    """A mock-protocol response requesting tool calls."""
    tool_calls = []
    for index, call in enumerate(calls):
        name, arguments = call[0], call[1]
        call_id = call[2] if len(call) > 2 else f"call_{name}_{index}"
        tool_calls.append({"id": call_id, "name": name, "arguments": arguments})
    response = text_response(text or "")
    response["tool_calls"] = tool_calls
    return response


class ScriptedClient:
    """Client that returns a scripted sequence of responses/exceptions."""

    def __init__(self, script: list[Any]) -> None:
        self.script = script
        self.requests: list[dict[str, Any]] = []
        self.closed = False

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def respond(self, request: dict[str, Any]) -> dict[str, Any]:
        # Snapshot: the loop keeps appending to the same request.
        self.requests.append(copy.deepcopy(request))
        if not self.script:
            return text_response("ok")
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True


class ScriptedAdapter(MockAdapter):
    """MockAdapter under any provider name, backed by a ScriptedClient."""

    def __init__(self, name: str = "mock", script: list[Any] | None = None) -> None:
        self.name = name
        self.client = ScriptedClient(script if script is not None else [])

    def create_client(self, api_key: str | None) -> ScriptedClient:
        _ = api_key
        return self.client

    def binding(self, model: str = "scripted-model") -> ProviderBinding:
        return ProviderBinding(self, self.client, model)


def patch_registry(monkeypatch: Any, adapters: dict[str, ScriptedAdapter]) -> None:
    """Make fallback resolution return scripted adapters by provider name."""

    def fake_get_adapter(provider: str) -> ScriptedAdapter:
        return adapters[provider]

    monkeypatch.setattr("castor.llm.get_adapter", fake_get_adapter)


def candidate(provider: str, model: str | None = None) -> FallbackCandidate:
    return FallbackCandidate(provider=provider, model=model, api_key="test-key")
