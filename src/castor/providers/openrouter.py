"""OpenRouter adapter (OpenAI-compatible chat completions)."""

from __future__ import annotations

from typing import Any

from castor._http import RATE_LIMIT_STATUS_CODE, RETRYABLE_STATUS_CODES
from castor.constants import (
    DEFAULT_MODELS,
    OPENROUTER,
    OPENROUTER_BASE_URL,
    STRUCTURED_OUTPUT_TOOL_NAME,
)
from castor.errors import APIError
from castor.history import FunctionCall, FunctionCallOutput, HistoryItem, Message
from castor.providers._errors import extract_status_code, unrecoverable
from castor.providers.base import (
    BaseProviderAdapter,
    split_system,
    to_plain,
    with_instructions,
)
from castor.providers.models import (
    ClassifiedError,
    OperateRequest,
    ParsedResponse,
    ToolCall,
    ToolDefinition,
    ToolResult,
    UsageItem,
)
from castor.structured import structured_output_tool

STRUCTURED_OUTPUT_DESCRIPTION = (
    "REQUIRED: You MUST call this tool to provide your final response. "
    "After gathering all necessary information (including results from other tools), "
    "call this tool with the structured data to complete the request."
)
# Cloudflare timeout and upstream overload.
_GATEWAY_STATUS_CODES = frozenset({524, 529})


class OpenRouterAdapter(BaseProviderAdapter):
    """OpenRouter adapter.

    Uses the ``openai`` SDK pointed at OpenRouter. Structured output always
    goes through the synthetic tool with ``tool_choice="required"``.
    """

    name = OPENROUTER
    default_model = DEFAULT_MODELS[OPENROUTER]
    retryable_status_codes = RETRYABLE_STATUS_CODES | _GATEWAY_STATUS_CODES

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
        return AsyncOpenAI(api_key=api_key, base_url=OPENROUTER_BASE_URL)

    def classify_error(self, exc: BaseException) -> ClassifiedError:
        classified = super().classify_error(exc)
        status_code = extract_status_code(exc)
        if (
            status_code is not None
            and 400 <= status_code < 500
            and status_code != RATE_LIMIT_STATUS_CODE
            and status_code not in self.retryable_status_codes
        ):
            return unrecoverable(exc)
        return classified

    def format_tools(
        self,
        tools: list[ToolDefinition],
        output_schema: dict[str, Any] | None = None,
    ) -> list[ToolDefinition]:
        formatted = list(tools)
        if output_schema is not None:
            formatted.append(
                structured_output_tool(
                    output_schema, description=STRUCTURED_OUTPUT_DESCRIPTION
                )
            )
        return formatted

    def build_request(self, request: OperateRequest) -> dict[str, Any]:
        system, items = split_system(request)
        items = with_instructions(items, request.instructions)

        messages: list[dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        for item in items:
            _append_chat_message(messages, item)

        vendor: dict[str, Any] = {"model": request.model, "messages": messages}
        if request.tools:
            vendor["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": tool.name,
                        "description": tool.description,
                        "parameters": tool.parameters,
                    },
                }
                for tool in request.tools
            ]
            forced = any(t.name == STRUCTURED_OUTPUT_TOOL_NAME for t in request.tools)
            vendor["tool_choice"] = "required" if forced else "auto"
        vendor.update(request.provider_options)
        return vendor

    async def execute_request(self, client: Any, request: dict[str, Any]) -> Any:
        response = await client.chat.completions.create(**request)
        return to_plain(response)

    def parse_response(self, response: Any) -> ParsedResponse:
        choice = _first_choice(response)
        message = choice.get("message") or {}
        return ParsedResponse(
            content=message.get("content") or None,
            has_tool_calls=bool(message.get("tool_calls")),
            stop_reason=choice.get("finish_reason"),
            usage=self.extract_usage(response, str(response.get("model", ""))),
        )

    def extract_tool_calls(self, response: Any) -> list[ToolCall]:
        message = _first_choice(response).get("message") or {}
        calls: list[ToolCall] = []
        for raw in message.get("tool_calls") or []:
            if not isinstance(raw, dict):
                continue
            function = raw.get("function") or {}
            calls.append(
                ToolCall(
                    call_id=str(raw.get("id", "")),
                    name=str(function.get("name", "")),
                    arguments=str(function.get("arguments") or "{}"),
                    raw={
                        "id": raw.get("id", ""),
                        "type": "function",
                        "function": {
                            "name": function.get("name", ""),
                            "arguments": function.get("arguments") or "{}",
                        },
                    },
                )
            )
        return calls

    def extract_usage(self, response: Any, model: str) -> UsageItem:
        usage = response.get("usage") if isinstance(response, dict) else None
        if not isinstance(usage, dict):
            return UsageItem(provider=self.name, model=model)
        details = usage.get("completion_tokens_details") or {}
        input_tokens = int(usage.get("prompt_tokens") or 0)
        output_tokens = int(usage.get("completion_tokens") or 0)
        return UsageItem(
            input=input_tokens,
            output=output_tokens,
            reasoning=int(details.get("reasoning_tokens") or 0),
            total=int(usage.get("total_tokens") or input_tokens + output_tokens),
            provider=self.name,
            model=model,
        )

    def extract_reasoning(self, response: Any) -> str | None:
        message = _first_choice(response).get("message") or {}
        reasoning = message.get("reasoning")
        return reasoning if isinstance(reasoning, str) and reasoning else None

    def format_tool_result(self, tool_call: ToolCall, result: ToolResult) -> dict[str, Any]:
        return {
            "role": "tool",
            "tool_call_id": tool_call.call_id,
            "content": result.output,
        }

    def append_tool_result(
        self,
        request: dict[str, Any],
        tool_call: ToolCall,
        result: ToolResult,
        *,
        continue_batch: bool = False,
    ) -> dict[str, Any]:
        messages: list[dict[str, Any]] = request["messages"]
        raw = tool_call.raw if isinstance(tool_call.raw, dict) else {
            "id": tool_call.call_id,
            "type": "function",
            "function": {"name": tool_call.name, "arguments": tool_call.arguments},
        }

        assistant = _open_tool_call_message(messages) if continue_batch else None
        if assistant is not None:
            assistant["tool_calls"].append(raw)
        else:
            messages.append({"role": "assistant", "content": None, "tool_calls": [raw]})
        messages.append(self.format_tool_result(tool_call, result))
        return request

    def response_to_history_items(self, response: Any) -> list[HistoryItem]:
        if self.extract_tool_calls(response):
            return []
        content = self.parse_response(response).content
        return [Message(role="assistant", content=content)] if content else []


def _first_choice(response: Any) -> dict[str, Any]:
    choices = response.get("choices") if isinstance(response, dict) else None
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return {}


def _open_tool_call_message(messages: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Return the assistant message whose tool results are still being added."""
    for message in reversed(messages):
        if message.get("role") == "tool":
            continue
        if message.get("role") == "assistant" and message.get("tool_calls"):
            return message
        return None
    return None


def _append_chat_message(messages: list[dict[str, Any]], item: HistoryItem) -> None:
    # Chat messages carry no item-type discriminator.
    if isinstance(item, Message):
        messages.append({"role": item.role, "content": item.content})
    elif isinstance(item, FunctionCall):
        call = {
            "id": item.call_id,
            "type": "function",
            "function": {"name": item.name, "arguments": item.arguments},
        }
        previous = messages[-1] if messages else None
        if previous and previous.get("role") == "assistant" and previous.get("tool_calls"):
            previous["tool_calls"].append(call)
        else:
            messages.append({"role": "assistant", "content": None, "tool_calls": [call]})
    elif isinstance(item, FunctionCallOutput):
        messages.append(
            {"role": "tool", "tool_call_id": item.call_id, "content": item.output}
        )
    else:  # pragma: no cover
        raise TypeError(f"Unsupported history item: {item!r}")
