"""Mock adapter for running castor without API calls."""

from __future__ import annotations

import json
from typing import Any

from castor.constants import DEFAULT_MODELS, MOCK
from castor.history import FunctionCall, FunctionCallOutput, HistoryItem, Message
from castor.providers.base import BaseProviderAdapter, split_system, with_instructions
from castor.providers.models import (
    OperateRequest,
    ParsedResponse,
    ToolCall,
    ToolDefinition,
    ToolResult,
    UsageItem,
)
from castor.structured import structured_output_tool


class MockClient:
    """Offline client that echoes the latest user message."""

    def __init__(self) -> None:
        self.requests: list[dict[str, Any]] = []

    async def respond(self, request: dict[str, Any]) -> dict[str, Any]:
        self.requests.append(request)
        text = next(
            (
                m["content"]
                for m in reversed(request["messages"])
                if m.get("role") == "user" and m.get("content")
            ),
            "",
        )
        return {
            "model": request["model"],
            "text": f"echo: {text[:100]}",
            "usage": {"input_tokens": 10, "output_tokens": 10, "total_tokens": 20},
        }

    async def close(self) -> None:
        return None


class MockAdapter(BaseProviderAdapter):
    """Adapter over a plain-dict protocol.

    Responses look like ``{"model", "text", "tool_calls": [{"id", "name",
    "arguments"}], "usage": {"input_tokens", "output_tokens", "total_tokens"}}``.
    Structured output uses the synthetic tool.
    """

    name = MOCK
    default_model = DEFAULT_MODELS[MOCK]

    def create_client(self, api_key: str | None) -> Any:
        _ = api_key
        return MockClient()

    def format_tools(
        self,
        tools: list[ToolDefinition],
        output_schema: dict[str, Any] | None = None,
    ) -> list[ToolDefinition]:
        formatted = list(tools)
        if output_schema is not None:
            formatted.append(structured_output_tool(output_schema))
        return formatted

    def build_request(self, request: OperateRequest) -> dict[str, Any]:
        system, items = split_system(request)
        items = with_instructions(items, request.instructions)
        vendor: dict[str, Any] = {
            "model": request.model,
            "system": system,
            "messages": [_to_dict(item) for item in items],
            "tools": [tool.name for tool in request.tools or []],
            "format": request.format,
        }
        vendor.update(request.provider_options)
        return vendor

    async def execute_request(self, client: Any, request: dict[str, Any]) -> Any:
        return await client.respond(request)

    def parse_response(self, response: Any) -> ParsedResponse:
        return ParsedResponse(
            content=response.get("text") or None,
            has_tool_calls=bool(response.get("tool_calls")),
            stop_reason="tool_use" if response.get("tool_calls") else "stop",
            usage=self.extract_usage(response, str(response.get("model", ""))),
        )

    def extract_tool_calls(self, response: Any) -> list[ToolCall]:
        calls: list[ToolCall] = []
        for index, raw in enumerate(response.get("tool_calls") or []):
            arguments = raw.get("arguments", {})
            if not isinstance(arguments, str):
                arguments = json.dumps(arguments)
            calls.append(
                ToolCall(
                    call_id=str(raw.get("id") or f"call_{index}"),
                    name=str(raw["name"]),
                    arguments=arguments,
                    raw=raw,
                )
            )
        return calls

    def extract_usage(self, response: Any, model: str) -> UsageItem:
        usage = response.get("usage")
        if not isinstance(usage, dict):
            return UsageItem(provider=self.name, model=model)
        return UsageItem(
            input=int(usage.get("input_tokens") or 0),
            output=int(usage.get("output_tokens") or 0),
            reasoning=int(usage.get("reasoning_tokens") or 0),
            total=int(usage.get("total_tokens") or 0),
            provider=self.name,
            model=model,
        )

    def extract_reasoning(self, response: Any) -> str | None:
        return response.get("reasoning") or None

    def format_tool_result(self, tool_call: ToolCall, result: ToolResult) -> dict[str, Any]:
        return {
            "type": "function_call_output",
            "call_id": tool_call.call_id,
            "output": result.output,
            "status": "success" if result.success else "error",
        }

    def append_tool_result(
        self,
        request: dict[str, Any],
        tool_call: ToolCall,
        result: ToolResult,
        *,
        continue_batch: bool = False,
    ) -> dict[str, Any]:
        _ = continue_batch
        request["messages"].append(
            {
                "type": "function_call",
                "name": tool_call.name,
                "arguments": tool_call.arguments,
                "call_id": tool_call.call_id,
            }
        )
        request["messages"].append(self.format_tool_result(tool_call, result))
        return request

    def response_to_history_items(self, response: Any) -> list[HistoryItem]:
        if self.extract_tool_calls(response):
            return []
        text = response.get("text")
        return [Message(role="assistant", content=text)] if text else []


def _to_dict(item: HistoryItem) -> dict[str, Any]:
    if isinstance(item, Message):
        return {"role": item.role, "content": item.content}
    if isinstance(item, FunctionCall):
        return {
            "type": "function_call",
            "name": item.name,
            "arguments": item.arguments,
            "call_id": item.call_id,
        }
    if isinstance(item, FunctionCallOutput):
        return {
            "type": "function_call_output",
            "call_id": item.call_id,
            "output": item.output,
            "status": item.status,
        }
    raise TypeError(f"Unsupported history item: {item!r}")  # pragma: no cover
