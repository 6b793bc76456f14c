"""Gemini adapter built on the google-genai SDK."""

from __future__ import annotations

from enum import Enum
import json
import re
from typing import Any

from castor.constants import DEFAULT_MODELS, GEMINI, STRUCTURED_OUTPUT_TOOL_NAME
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

STRUCTURED_OUTPUT_INSTRUCTION = (
    "IMPORTANT: Before providing your final response, you MUST use the "
    "structured_output tool to output your answer in the required JSON format."
)


class GeminiAdapter(BaseProviderAdapter):
    """Gemini adapter.

    Gemini cannot combine function calling with native JSON mode. Without
    tools a schema is sent as ``response_json_schema``; with tools the
    synthetic tool is added, calling is forced to ``ANY`` and the system
    instruction tells the model to finish through it.
    """

    name = GEMINI
    default_model = DEFAULT_MODELS[GEMINI]

    def create_client(self, api_key: str | None) -> Any:
        try:
            from google import genai
        except ImportError as e:
            raise APIError(
                "google-genai package not installed",
                hint="uv pip install google-genai",
                retryable=False,
                provider=self.name,
                phase="create_client",
            ) from e
        return genai.Client(api_key=api_key)

    async def close_client(self, client: Any) -> None:
        aclose = getattr(getattr(client, "aio", None), "aclose", None)
        if callable(aclose):
            await aclose()

    def format_tools(
        self,
        tools: list[ToolDefinition],
        output_schema: dict[str, Any] | None = None,
    ) -> list[ToolDefinition]:
        formatted = list(tools)
        # The synthetic tool is only needed when native JSON mode is unavailable.
        if formatted and output_schema is not None:
            formatted.append(structured_output_tool(output_schema))
        return formatted

    def build_request(self, request: OperateRequest) -> dict[str, Any]:
        system, items = split_system(request)
        items = with_instructions(items, request.instructions)

        names_by_call_id = {
            item.call_id: item.name for item in items if isinstance(item, FunctionCall)
        }
        contents: list[dict[str, Any]] = []
        for item in items:
            _append_content(contents, _to_content(item, names_by_call_id))

        config: dict[str, Any] = {}
        tools = request.tools or []
        synthetic = any(t.name == STRUCTURED_OUTPUT_TOOL_NAME for t in tools)
        if synthetic:
            system = (
                f"{system}\n\n{STRUCTURED_OUTPUT_INSTRUCTION}"
                if system
                else STRUCTURED_OUTPUT_INSTRUCTION
            )
        if system:
            config["system_instruction"] = system

        if tools:
            config["tools"] = [
                {
                    "function_declarations": [
                        {
                            "name": tool.name,
                            "description": tool.description,
                            "parameters_json_schema": tool.parameters,
                        }
                        for tool in tools
                    ]
                }
            ]
            config["tool_config"] = {
                "function_calling_config": {"mode": "ANY" if synthetic else "AUTO"}
            }
        elif request.format is not None:
            config["response_mime_type"] = "application/json"
            config["response_json_schema"] = request.format

        config.update(request.provider_options)
        return {"model": request.model, "contents": contents, "config": config}

    async def execute_request(self, client: Any, request: dict[str, Any]) -> Any:
        response = await client.aio.models.generate_content(
            model=request["model"],
            contents=request["contents"],
            config=request["config"] or None,
        )
        # Python mode keeps thought signatures as bytes for replay.
        return to_plain(response, mode="python")

    def parse_response(self, response: Any) -> ParsedResponse:
        parts = _parts(response)
        candidate = _first_candidate(response)
        finish_reason = candidate.get("finish_reason")
        if isinstance(finish_reason, Enum):
            finish_reason = finish_reason.value
        return ParsedResponse(
            content=_text(parts),
            has_tool_calls=any("function_call" in p for p in parts),
            stop_reason=str(finish_reason) if finish_reason is not None else None,
            usage=self.extract_usage(response, str(response.get("model_version", ""))),
        )

    def extract_tool_calls(self, response: Any) -> list[ToolCall]:
        calls: list[ToolCall] = []
        for index, part in enumerate(_parts(response)):
            function_call = part.get("function_call")
            if not isinstance(function_call, dict):
                continue
            name = str(function_call.get("name", ""))
            call_id = function_call.get("id") or f"{name}_{index}"
            calls.append(
                ToolCall(
                    call_id=str(call_id),
                    name=name,
                    arguments=json.dumps(function_call.get("args") or {}),
                    raw=part,
                )
            )
        return calls

    def extract_usage(self, response: Any, model: str) -> UsageItem:
        usage = response.get("usage_metadata") if isinstance(response, dict) else None
        if not isinstance(usage, dict):
            return UsageItem(provider=self.name, model=model)
        input_tokens = int(usage.get("prompt_token_count") or 0)
        output_tokens = int(usage.get("candidates_token_count") or 0)
        reasoning_tokens = int(usage.get("thoughts_token_count") or 0)
        return UsageItem(
            input=input_tokens,
            output=output_tokens,
            reasoning=reasoning_tokens,
            total=int(
                usage.get("total_token_count")
                or input_tokens + output_tokens + reasoning_tokens
            ),
            provider=self.name,
            model=model,
        )

    def extract_reasoning(self, response: Any) -> str | None:
        thoughts = [
            str(p.get("text", ""))
            for p in _parts(response)
            if p.get("thought") and p.get("text")
        ]
        return "\n\n".join(thoughts) or None

    def format_tool_result(self, tool_call: ToolCall, result: ToolResult) -> dict[str, Any]:
        function_response: dict[str, Any] = {
            "name": tool_call.name,
            "response": _response_payload(result.output),
        }
        if _vendor_call_id(tool_call):
            function_response["id"] = tool_call.call_id
        return {"function_response": function_response}

    def append_tool_result(
        self,
        request: dict[str, Any],
        tool_call: ToolCall,
        result: ToolResult,
        *,
        continue_batch: bool = False,
    ) -> dict[str, Any]:
        contents: list[dict[str, Any]] = request["contents"]
        call_part = (
            tool_call.raw
            if isinstance(tool_call.raw, dict)
            else {
                "function_call": {
                    "name": tool_call.name,
                    "args": parse_arguments(tool_call.arguments) or {},
                }
            }
        )
        response_part = self.format_tool_result(tool_call, result)

        if (
            continue_batch
            and len(contents) >= 2
            and contents[-2]["role"] == "model"
            and contents[-1]["role"] == "user"
        ):
            contents[-2]["parts"].append(call_part)
            contents[-1]["parts"].append(response_part)
            return request

        _append_content(contents, {"role": "model", "parts": [call_part]})
        _append_content(contents, {"role": "user", "parts": [response_part]})
        return request

    def response_to_history_items(self, response: Any) -> list[HistoryItem]:
        if self.extract_tool_calls(response):
            return []
        text = _text(_parts(response))
        return [Message(role="assistant", content=text)] if text else []


def _first_candidate(response: Any) -> dict[str, Any]:
    candidates = response.get("candidates") if isinstance(response, dict) else None
    if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict):
        return candidates[0]
    return {}


def _parts(response: Any) -> list[dict[str, Any]]:
    content = _first_candidate(response).get("content")
    parts = content.get("parts") if isinstance(content, dict) else None
    if not isinstance(parts, list):
        return []
    return [p for p in parts if isinstance(p, dict)]


def _text(parts: list[dict[str, Any]]) -> str | None:
    texts = [
        str(p["text"]) for p in parts if p.get("text") is not None and not p.get("thought")
    ]
    return "".join(texts) if texts else None


def _response_payload(output: str) -> dict[str, Any]:
    """Gemini function responses must be objects."""
    try:
        parsed = json.loads(output)
    except json.JSONDecodeError:
        return {"result": output}
    return parsed if isinstance(parsed, dict) else {"result": parsed}


def _to_content(item: HistoryItem, names_by_call_id: dict[str, str]) -> dict[str, Any]:
    if isinstance(item, Message):
        role = "model" if item.role == "assistant" else "user"
        return {"role": role, "parts": [{"text": item.content}]}
    if isinstance(item, FunctionCall):
        arguments = parse_arguments(item.arguments)
        function_call: dict[str, Any] = {
            "name": item.name,
            "args": arguments if isinstance(arguments, dict) else {},
        }
        if not _is_generated_id(item.name, item.call_id):
            function_call["id"] = item.call_id
        return {"role": "model", "parts": [{"function_call": function_call}]}
    if isinstance(item, FunctionCallOutput):
        name = names_by_call_id.get(item.call_id, item.call_id)
        function_response: dict[str, Any] = {
            "name": name,
            "response": _response_payload(item.output),
        }
        if not _is_generated_id(name, item.call_id):
            function_response["id"] = item.call_id
        return {"role": "user", "parts": [{"function_response": function_response}]}
    raise TypeError(f"Unsupported history item: {item!r}")  # pragma: no cover


def _append_content(contents: list[dict[str, Any]], content: dict[str, Any]) -> None:
    """Append *content*, merging parts into the previous entry of the same role."""
    if contents and contents[-1]["role"] == content["role"]:
        contents[-1]["parts"] = [*contents[-1]["parts"], *content["parts"]]
    else:
        contents.append(content)


def _vendor_call_id(tool_call: ToolCall) -> bool:
    """Whether the call id came from Gemini rather than being generated."""
    if not isinstance(tool_call.raw, dict):
        return bool(tool_call.call_id) and not _is_generated_id(
            tool_call.name, tool_call.call_id
        )
    function_call = tool_call.raw.get("function_call")
    return isinstance(function_call, dict) and bool(function_call.get("id"))


def _is_generated_id(name: str, call_id: str) -> bool:
    """Whether *call_id* has the ``{name}_{index}`` shape assigned when Gemini omits ids."""
    return re.fullmatch(rf"{re.escape(name)}_\d+", call_id) is not None
