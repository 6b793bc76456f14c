"""OpenAI Responses API adapter."""

from __future__ import annotations

from typing import Any

from castor.constants import DEFAULT_MODELS, OPENAI, STRUCTURED_OUTPUT_TOOL_NAME
from castor.errors import APIError
from castor.history import FunctionCall, FunctionCallOutput, HistoryItem, Message
from castor.providers.base import (
    BaseProviderAdapter,
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
from castor.schema import to_strict_schema, wrap_value_schema


class OpenAIAdapter(BaseProviderAdapter):
    """OpenAI Responses API adapter.

    Structured output uses the native ``text.format`` JSON schema, which the
    Responses API accepts alongside function tools, so no synthetic tool is
    needed.
    """

    name = OPENAI
    default_model = DEFAULT_MODELS[OPENAI]

    def create_client(self, api_key: str | None) -> Any:
        try:
            from openai import AsyncOpenAI
        except ImportError as e:
            raise APIError(
                "openai package not installed",
                hint="uv pip install openai",
                retryable=False,
                provider=self.name,
                phase="create_client",
            ) from e
        return AsyncOpenAI(api_key=api_key)

    def format_tools(
        self,
        tools: list[ToolDefinition],
        output_schema: dict[str, Any] | None = None,
    ) -> list[ToolDefinition]:
        _ = output_schema
        return list(tools)

    def build_request(self, request: OperateRequest) -> dict[str, Any]:
        system, items = split_system(request)
        items = with_instructions(items, request.instructions)

        input_items: list[dict[str, Any]] = []
        if system:
            input_items.append({"role": "system", "content": system})
        input_items.extend(_to_input_item(item) for item in items)

        vendor: dict[str, Any] = {"model": request.model, "input": input_items}
        if request.tools:
            vendor["tools"] = [
                {
                    "type": "function",
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.parameters,
                    "strict": False,
                }
                for tool in request.tools
            ]
        if request.format is not None:
            vendor["text"] = {
                "format": {
                    "type": "json_schema",
                    "name": STRUCTURED_OUTPUT_TOOL_NAME,
                    "schema": to_strict_schema(wrap_value_schema(request.format)),
                    "strict": True,
                }
            }
        vendor.update(request.provider_options)
        return vendor

    async def execute_request(self, client: Any, request: dict[str, Any]) -> Any:
        response = await client.responses.create(**request)
        return to_plain(response)

    def parse_response(self, response: Any) -> ParsedResponse:
        output = _output_items(response)
        stop_reason = response.get("status")
        incomplete = response.get("incomplete_details") or {}
        if isinstance(incomplete, dict) and incomplete.get("reason"):
            stop_reason = incomplete["reason"]
        return ParsedResponse(
            content=_output_text(output),
            has_tool_calls=any(o.get("type") == "function_call" for o in output),
            stop_reason=stop_reason,
            usage=self.extract_usage(response, str(response.get("model", ""))),
        )

    def extract_tool_calls(self, response: Any) -> list[ToolCall]:
        calls: list[ToolCall] = []
        # Reasoning items must be replayed ahead of the function_call they led to.
        pending_reasoning: list[dict[str, Any]] = []
        for item in _output_items(response):
            item_type = item.get("type")
            if item_type == "reasoning":
                pending_reasoning.append(item)
            elif item_type == "function_call":
                calls.append(
                    ToolCall(
                        call_id=str(item.get("call_id", "")),
                        name=str(item.get("name", "")),
                        arguments=str(item.get("arguments") or "{}"),
                        raw=[*pending_reasoning, item],
                    )
                )
                pending_reasoning = []
        return calls

    def extract_usage(self, response: Any, model: str) -> UsageItem:
        usage = response.get("usage") if isinstance(response, dict) else None
        if not isinstance(usage, dict):
            return UsageItem(provider=self.name, model=model)
        details = usage.get("output_tokens_details") or {}
        input_tokens = int(usage.get("input_tokens") or 0)
        output_tokens = int(usage.get("output_tokens") or 0)
        return UsageItem(
            input=input_tokens,
            output=output_tokens,
            reasoning=int(details.get("reasoning_tokens") or 0),
            total=int(usage.get("total_tokens") or input_tokens + output_tokens),
            provider=self.name,
            model=model,
        )

    def extract_reasoning(self, response: Any) -> str | None:
        texts: list[str] = []
        for item in _output_items(response):
            if item.get("type") != "reasoning":
                continue
            for summary in item.get("summary") or []:
                text = summary.get("text") if isinstance(summary, dict) else None
                if text:
                    texts.append(text)
        return "\n\n".join(texts) or None

    def format_tool_result(self, tool_call: ToolCall, result: ToolResult) -> dict[str, Any]:
        return {
            "type": "function_call_output",
            "call_id": tool_call.call_id,
            "output": result.output,
        }

    def append_tool_result(
        self,
        request: dict[str, Any],
        tool_call: ToolCall,
        result: ToolResult,
        *,
        continue_batch: bool = False,
    ) -> dict[str, Any]:
        # Responses API items are flat, so batches need no regrouping.
        _ = continue_batch
        raw = tool_call.raw if isinstance(tool_call.raw, list) else [
            {
                "type": "function_call",
                "call_id": tool_call.call_id,
                "name": tool_call.name,
                "arguments": tool_call.arguments,
            }
        ]
        request["input"].extend(raw)
        request["input"].append(self.format_tool_result(tool_call, result))
        return request

    def response_to_history_items(self, response: Any) -> list[HistoryItem]:
        if self.extract_tool_calls(response):
            return []
        text = _output_text(_output_items(response))
        return [Message(role="assistant", content=text)] if text else []


def _output_items(response: Any) -> list[dict[str, Any]]:
    output = response.get("output") if isinstance(response, dict) else None
    if not isinstance(output, list):
        return []
    return [o for o in output if isinstance(o, dict)]


def _output_text(output: list[dict[str, Any]]) -> str | None:
    texts: list[str] = []
    for item in output:
        if item.get("type") != "message":
            continue
        for part in item.get("content") or []:
            if isinstance(part, dict) and part.get("type") == "output_text":
                texts.append(str(part.get("text", "")))
    return "".join(texts) if texts else None


def _to_input_item(item: HistoryItem) -> dict[str, Any]:
    if isinstance(item, Message):
        return {"role": item.role, "content": item.content}
    if isinstance(item, FunctionCall):
        return {
            "type": "function_call",
            "call_id": item.call_id,
            "name": item.name,
            "arguments": item.arguments,
        }
    if isinstance(item, FunctionCallOutput):
        return {
            "type": "function_call_output",
            "call_id": item.call_id,
            "output": item.output,
        }
    raise TypeError(f"Unsupported history item: {item!r}")  # pragma: no cover
