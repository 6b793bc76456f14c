"""Conversation history model and input processing.

History is an ordered list of ``HistoryItem`` values. Items are frozen and the
list is only ever appended to while a call is in flight.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
from typing import TYPE_CHECKING, Any, Literal, Union

from castor._placeholders import substitute
from castor.errors import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

Role = Literal["system", "user", "assistant"]
_ROLE_ALIASES: dict[str, Role] = {
    "system": "system",
    "developer": "system",
    "user": "user",
    "assistant": "assistant",
    "model": "assistant",
}


@dataclass(frozen=True)
class Message:
    """A plain text message."""

    role: Role
    content: str


@dataclass(frozen=True)
class FunctionCall:
    """A tool invocation requested by the model."""

    name: str
    arguments: str
    call_id: str


@dataclass(frozen=True)
class FunctionCallOutput:
    """The serialized result of running a tool."""

    call_id: str
    output: str
    status: Literal["success", "error"] = "success"


HistoryItem = Union[Message, FunctionCall, FunctionCallOutput]


def history_item_from_dict(raw: Mapping[str, Any]) -> HistoryItem:
    """Build a history item from its dict form.

    Accepts ``{"role", "content"}`` messages and the ``function_call`` /
    ``function_call_output`` item types.
    """
    item_type = raw.get("type")
    if item_type == "function_call":
        arguments = raw.get("arguments", "{}")
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments)
        call_id = raw.get("call_id") or raw.get("callId") or raw.get("id")
        if not isinstance(raw.get("name"), str) or not isinstance(call_id, str):
            raise ConfigurationError(
                "function_call history items need 'name' and 'call_id'",
                hint="Example: {'type': 'function_call', 'name': 'f', 'arguments': '{}', 'call_id': 'c1'}",
            )
        return FunctionCall(name=raw["name"], arguments=arguments, call_id=call_id)

    if item_type == "function_call_output":
        call_id = raw.get("call_id") or raw.get("callId")
        output = raw.get("output", "")
        if not isinstance(call_id, str):
            raise ConfigurationError(
                "function_call_output history items need 'call_id'",
            )
        if not isinstance(output, str):
            output = json.dumps(output, default=str)
        status = raw.get("status", "success")
        if status not in ("success", "error"):
            status = "success"
        return FunctionCallOutput(call_id=call_id, output=output, status=status)

    if item_type not in (None, "message"):
        raise ConfigurationError(
            f"Unknown history item type: {item_type!r}",
            hint="Use 'message', 'function_call', or 'function_call_output'.",
        )

    role = _ROLE_ALIASES.get(str(raw.get("role", "user")).lower())
    if role is None:
        raise ConfigurationError(
            f"Unknown message role: {raw.get('role')!r}",
            hint="Roles are 'system', 'user', or 'assistant'.",
        )
    content = raw.get("content", "")
    if isinstance(content, list):
        # Content-part lists collapse to their text.
        content = "".join(
            str(part.get("text", "")) if isinstance(part, dict) else str(part)
            for part in content
        )
    if not isinstance(content, str):
        content = json.dumps(content, default=str)
    return Message(role=role, content=content)


def coerce_history(
    items: Sequence[HistoryItem | Mapping[str, Any]] | None,
) -> list[HistoryItem]:
    """Normalize a mixed list of items and dicts into history items."""
    if not items:
        return []
    history: list[HistoryItem] = []
    for item in items:
        if isinstance(item, (Message, FunctionCall, FunctionCallOutput)):
            history.append(item)
        elif isinstance(item, dict):
            history.append(history_item_from_dict(item))
        else:
            raise ConfigurationError(
                f"Unsupported history item: {type(item).__name__}",
                hint="Pass Message/FunctionCall/FunctionCallOutput values or dicts.",
            )
    return history


def _apply(item: HistoryItem, data: dict[str, Any]) -> HistoryItem:
    if isinstance(item, Message):
        return Message(role=item.role, content=substitute(item.content, data))
    return item


@dataclass(frozen=True)
class ProcessedInput:
    """Input after placeholder substitution and history merging."""

    history: list[HistoryItem]
    instructions: str | None = None
    system: str | None = None


def process_input(
    input: str | HistoryItem | Sequence[HistoryItem | Mapping[str, Any]],  # noqa: A002
    *,
    data: dict[str, Any] | None = None,
    history: Sequence[HistoryItem | Mapping[str, Any]] | None = None,
    instructions: str | None = None,
    system: str | None = None,
    substitute_input: bool = True,
    substitute_instructions: bool = True,
    substitute_system: bool = True,
) -> ProcessedInput:
    """Turn caller input into the history a provider attempt starts from.

    Prior *history* is prepended. A *system* prompt becomes the first message,
    replacing a different leading system message and never duplicating an
    identical one.
    """
    if isinstance(input, str):
        items: list[HistoryItem] = [Message(role="user", content=input)]
    elif isinstance(input, (Message, FunctionCall, FunctionCallOutput)):
        items = [input]
    elif isinstance(input, dict):
        items = [history_item_from_dict(input)]
    else:
        items = coerce_history(input)

    if data and substitute_input:
        items = [_apply(item, data) for item in items]
    if instructions and data and substitute_instructions:
        instructions = substitute(instructions, data)
    if system and data and substitute_system:
        system = substitute(system, data)

    merged = coerce_history(history) + items

    if system:
        first = merged[0] if merged else None
        system_message = Message(role="system", content=system)
        if isinstance(first, Message) and first.role == "system":
            if first.content != system:
                merged = [system_message, *merged[1:]]
        else:
            merged = [system_message, *merged]

    return ProcessedInput(
        history=merged,
        instructions=instructions or None,
        system=system or None,
    )
