"""Provider adapter protocol and shared adapter behavior.

Each adapter owns exactly one conversion into the vendor request shape and
one conversion out of the vendor response shape. Code outside the adapters
never inspects vendor-native payloads.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from castor._http import RETRYABLE_STATUS_CODES, UNRECOVERABLE_STATUS_CODES
from castor.constants import STRUCTURED_OUTPUT_TOOL_NAME
from castor.history import Message
from castor.providers._errors import classify_error

if TYPE_CHECKING:
    from castor.history import HistoryItem
    from castor.providers.models import (
        ClassifiedError,
        OperateRequest,
        ParsedResponse,
        ToolCall,
        ToolDefinition,
        ToolResult,
        UsageItem,
    )


@runtime_checkable
class ProviderAdapter(Protocol):
    """Translate between castor's internal model and one vendor API."""

    name: str
    default_model: str

    def create_client(self, api_key: str | None) -> Any:
        """Build the vendor SDK client."""
        ...

    async def close_client(self, client: Any) -> None:
        """Release client resources."""
        ...

    def build_request(self, request: OperateRequest) -> dict[str, Any]:
        """Convert an internal request into vendor request kwargs."""
        ...

    def format_tools(
        self,
        tools: list[ToolDefinition],
        output_schema: dict[str, Any] | None = None,
    ) -> list[ToolDefinition]:
        """Return the tool list sent to the vendor, synthetic tool included."""
        ...

    async def execute_request(self, client: Any, request: dict[str, Any]) -> Any:
        """Perform exactly one vendor call."""
        ...

    def parse_response(self, response: Any) -> ParsedResponse: ...

    def extract_tool_calls(self, response: Any) -> list[ToolCall]: ...

    def extract_usage(self, response: Any, model: str) -> UsageItem: ...

    def extract_reasoning(self, response: Any) -> str | None: ...

    def format_tool_result(self, tool_call: ToolCall, result: ToolResult) -> Any: ...

    def append_tool_result(
        self,
        request: dict[str, Any],
        tool_call: ToolCall,
        result: ToolResult,
        *,
        continue_batch: bool = False,
    ) -> dict[str, Any]:
        """Extend the vendor conversation with one call/result pair."""
        ...

    def response_to_history_items(self, response: Any) -> list[HistoryItem]: ...

    def classify_error(self, exc: BaseException) -> ClassifiedError: ...

    def is_complete(self, response: Any) -> bool: ...

    def has_structured_output(self, response: Any) -> bool: ...

    def extract_structured_output(self, response: Any) -> dict[str, Any] | None: ...


class BaseProviderAdapter:
    """Vendor-independent parts of the adapter contract."""

    name: str = ""
    default_model: str = ""
    retryable_status_codes: frozenset[int] = RETRYABLE_STATUS_CODES
    unrecoverable_status_codes: frozenset[int] = UNRECOVERABLE_STATUS_CODES

    async def close_client(self, client: Any) -> None:
        close = getattr(client, "close", None)
        if callable(close):
            await close()

    def extract_reasoning(self, response: Any) -> str | None:
        _ = response
        return None

    def classify_error(self, exc: BaseException) -> ClassifiedError:
        return classify_error(
            exc,
            retryable_status_codes=self.retryable_status_codes,
            unrecoverable_status_codes=self.unrecoverable_status_codes,
        )

    def extract_tool_calls(self, response: Any) -> list[ToolCall]:
        raise NotImplementedError

    def is_complete(self, response: Any) -> bool:
        return not any(
            call.name != STRUCTURED_OUTPUT_TOOL_NAME
            for call in self.extract_tool_calls(response)
        )

    def has_structured_output(self, response: Any) -> bool:
        calls = self.extract_tool_calls(response)
        return bool(calls) and calls[-1].name == STRUCTURED_OUTPUT_TOOL_NAME

    def extract_structured_output(self, response: Any) -> dict[str, Any] | None:
        if not self.has_structured_output(response):
            return None
        arguments = self.extract_tool_calls(response)[-1].arguments
        try:
            value = json.loads(arguments) if arguments else {}
        except json.JSONDecodeError:
            return None
        return value if isinstance(value, dict) else None


def split_system(request: OperateRequest) -> tuple[str | None, list[HistoryItem]]:
    """Separate system text from the conversation items.

    Leading system messages and ``request.system`` are merged without
    repeating identical text.
    """
    system_parts: list[str] = []
    items: list[HistoryItem] = []
    for item in request.messages:
        if isinstance(item, Message) and item.role == "system":
            if item.content and item.content not in system_parts:
                system_parts.append(item.content)
        else:
            items.append(item)
    if request.system and request.system not in system_parts:
        system_parts.insert(0, request.system)
    return ("\n\n".join(system_parts) or None), items


def with_instructions(
    items: list[HistoryItem], instructions: str | None
) -> list[HistoryItem]:
    """Append *instructions* to the final message, or add a user message."""
    if not instructions:
        return list(items)
    if items and isinstance(items[-1], Message) and items[-1].role == "user":
        last = items[-1]
        merged = f"{last.content}\n\n{instructions}" if last.content else instructions
        return [*items[:-1], Message(role=last.role, content=merged)]
    return [*items, Message(role="user", content=instructions)]


def parse_arguments(arguments: str) -> Any:
    """Decode serialized tool arguments, keeping raw text when not JSON."""
    if not arguments:
        return {}
    try:
        return json.loads(arguments)
    except json.JSONDecodeError:
        return arguments


def to_plain(response: Any, *, mode: str = "json") -> Any:
    """Convert an SDK response object into plain dicts and lists."""
    dump = getattr(response, "model_dump", None)
    if callable(dump):
        return dump(mode=mode, exclude_none=True)
    return response
