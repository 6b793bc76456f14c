"""Anthropic Messages API adapter."""

from __future__ import annotations

import json
from typing import Any

from castor._http import RETRYABLE_STATUS_CODES
from castor.constants import ANTHROPIC, DEFAULT_MODELS, STRUCTURED_OUTPUT_TOOL_NAME
from castor.errors import APIError
from castor.history import FunctionCall, FunctionCallOutput, HistoryItem, Message
from castor.providers.base import (
    BaseProviderAdapter,
    parse_arguments,
    split_system,
    to_plain,
    with_instructions,
)
from castor.providers.models import (
    OperateRequest,
    ParsedResponse,
    ToolCall,
    ToolDefinition,
    ToolResult,
    UsageItem,
)
from castor.structured import structured_output_tool

_ANTHROPIC_MAX_TOKENS = 8192
_OVERLOADED_STATUS_CODE = 529


class AnthropicAdapter(BaseProviderAdapter):
    """Anthropic Messages API adapter.

    Structured output always goes through the synthetic tool, with
    ``tool_choice`` forced to ``any`` while that tool is on offer.
    """

    name = ANTHROPIC
    default_model = DEFAULT_MODELS[ANTHROPIC]
    retryable_status_codes = RETRYABLE_STATUS_CODES | {_OVERLOADED_STATUS_CODE}

    def create_client(self, api_key: str | None) -> Any:
        try:
            from anthropic import AsyncAnthropic
        except ImportError as e:
            raise APIError(
                "anthropic package not installed",
                hint="uv pip install anthropic",
                retryable=False,
                provider=self.name,
                phase="create_client",
            ) from e
        return AsyncAnthropic(api_key=api_key)

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

        messages: list[dict[str, Any]] = []
        for item in items:
            _append_message(messages, _to_message(item))

        vendor: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "max_tokens": _ANTHROPIC_MAX_TOKENS,
        }
        if system:
            vendor["system"] = system
        if request.tools:
            vendor["tools"] = [
                {
                    "name": tool.name,
                    "description": tool.description,
                    "input_schema": {"type": "object", **tool.parameters},
                }
                for tool in request.tools
            ]
            forced = any(t.name == STRUCTURED_OUTPUT_TOOL_NAME for t in request.tools)
            vendor["tool_choice"] = {"type": "any" if forced else "auto"}
        vendor.update(request.provider_options)
        return vendor

    async def execute_request(self, client: Any, request: dict[str, Any]) -> Any:
        response = await client.messages.create(**request)
        return to_plain(response)

    def parse_response(self, response: Any) -> ParsedResponse:
        blocks = _content_blocks(response)
        stop_reason = response.get("stop_reason")
        return ParsedResponse(
            content=_text(blocks),
            has_tool_calls=stop_reason == "tool_use"
            or any(b.get("type") == "tool_use" for b in blocks),
            stop_reason=stop_reason,
            usage=self.extract_usage(response, str(response.get("model", ""))),
        )

    def extract_tool_calls(self, response: Any) -> list[ToolCall]:
        calls: list[ToolCall] = []
        # Text and thinking blocks that led to a tool_use are replayed with it.
        preceding: list[dict[str, Any]] = []
        for block in _content_blocks(response):
            if block.get("type") != "tool_use":
                preceding.append(_replay_block(block))
                continue
            tool_use = {
                "type": "tool_use",
                "id": block.get("id", ""),
                "name": block.get("name", ""),
                "input": block.get("input") or {},
            }
            calls.append(
                ToolCall(
                    call_id=str(tool_use["id"]),
                    name=str(tool_use["name"]),
                    arguments=json.dumps(tool_use["input"]),
                    raw=[b for b in preceding if b] + [tool_use],
                )
            )
            preceding = []
        return calls

    def extract_usage(self, response: Any, model: str) -> UsageItem:
        usage = response.get("usage") if isinstance(response, dict) else None
        if not isinstance(usage, dict):
            return UsageItem(provider=self.name, model=model)
        input_tokens = int(usage.get("input_tokens") or 0)
        output_tokens = int(usage.get("output_tokens") or 0)
        return UsageItem(
            input=input_tokens,
            output=output_tokens,
            reasoning=0,
            total=input_tokens + output_tokens,
            provider=self.name,
            model=model,
        )

    def extract_reasoning(self, response: Any) -> str | None:
        thoughts = [
            str(b.get("thinking", ""))
            for b in _content_blocks(response)
            if b.get("type") == "thinking" and b.get("thinking")
        ]
        return "\n\n".join(thoughts) or None

    def format_tool_result(self, tool_call: ToolCall, result: ToolResult) -> dict[str, Any]:
        block: dict[str, Any] = {
            "type": "tool_result",
            "tool_use_id": tool_call.call_id,
            "content": result.output,
        }
        if not result.success:
            block["is_error"] = True
        return block

    def append_tool_result(
        self,
        request: dict[str, Any],
        tool_call: ToolCall,
        result: ToolResult,
        *,
        continue_batch: bool = False,
    ) -> dict[str, Any]:
        messages: list[dict[str, Any]] = request["messages"]
        blocks = (
            list(tool_call.raw)
            if isinstance(tool_call.raw, list)
            else [
                {
                    "type": "tool_use",
                    "id": tool_call.call_id,
                    "name": tool_call.name,
                    "input": parse_arguments(tool_call.arguments) or {},
                }
            ]
        )
        result_block = self.format_tool_result(tool_call, result)

        if (
            continue_batch
            and len(messages) >= 2
            and messages[-2]["role"] == "assistant"
            and messages[-1]["role"] == "user"
        ):
            # Same turn: every tool_use sits in one assistant message and
            # every tool_result in the user message right after it.
            messages[-2]["content"].extend(blocks)
            messages[-1]["content"].append(result_block)
            return request

        _append_message(messages, {"role": "assistant", "content": blocks})
        _append_message(messages, {"role": "user", "content": [result_block]})
        return request

    def response_to_history_items(self, response: Any) -> list[HistoryItem]:
        if self.extract_tool_calls(response):
            return []
        text = _text(_content_blocks(response))
        return [Message(role="assistant", content=text)] if text else []


def _content_blocks(response: Any) -> list[dict[str, Any]]:
    content = response.get("content") if isinstance(response, dict) else None
    if not isinstance(content, list):
        return []
    return [b for b in content if isinstance(b, dict)]


def _text(blocks: list[dict[str, Any]]) -> str | None:
    texts = [str(b.get("text", "")) for b in blocks if b.get("type") == "text"]
    return "\n\n".join(texts) if texts else None


def _replay_block(block: dict[str, Any]) -> dict[str, Any]:
    """Return the input form of an output block, or ``{}`` to drop it."""
    block_type = block.get("type")
    if block_type == "text" and block.get("text"):
        return {"type": "text", "text": block["text"]}
    if block_type == "thinking" and isinstance(block.get("signature"), str):
        return {
            "type": "thinking",
            "thinking": block.get("thinking", ""),
            "signature": block["signature"],
        }
    if block_type == "redacted_thinking" and isinstance(block.get("data"), str):
        return {"type": "redacted_thinking", "data": block["data"]}
    return {}


def _to_message(item: HistoryItem) -> dict[str, Any]:
    if isinstance(item, Message):
        role = "assistant" if item.role == "assistant" else "user"
        return {"role": role, "content": item.content}
    if isinstance(item, FunctionCall):
        arguments = parse_arguments(item.arguments)
        return {
            "role": "assistant",
            "content": [
                {
                    "type": "tool_use",
                    "id": item.call_id,
                    "name": item.name,
                    "input": arguments if isinstance(arguments, dict) else {},
                }
            ],
        }
    if isinstance(item, FunctionCallOutput):
        block: dict[str, Any] = {
            "type": "tool_result",
            "tool_use_id": item.call_id,
            "content": item.output,
        }
        if item.status == "error":
            block["is_error"] = True
        return {"role": "user", "content": [block]}
    raise TypeError(f"Unsupported history item: {item!r}")  # pragma: no cover


def _append_message(messages: list[dict[str, Any]], msg: dict[str, Any]) -> None:
    """Append *msg*, merging into the previous message when roles match.

    Anthropic requires strict user/assistant alternation. Consecutive
    same-role messages have their content blocks merged.
    """
    if messages and messages[-1]["role"] == msg["role"]:
        prev = messages[-1]
        prev_content = prev["content"]
        new_content = msg["content"]
        if isinstance(prev_content, str):
            prev_content = [{"type": "text", "text": prev_content}]
        if isinstance(new_content, str):
            new_content = [{"type": "text", "text": new_content}]
        prev["content"] = prev_content + new_content
    else:
        messages.append(msg)
