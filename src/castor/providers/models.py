"""Domain models for the provider adapter layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from castor.history import HistoryItem


@dataclass(frozen=True)
class ToolDefinition:
    """A tool as advertised to the model."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass(frozen=True)
class ToolCall:
    """A tool call requested by the model.

    ``raw`` is the adapter-specific payload needed to re-attach the call to
    the vendor conversation.
    """

    call_id: str
    name: str
    arguments: str
    raw: Any = None


@dataclass(frozen=True)
class ToolResult:
    """A serialized tool result ready to send back to the model."""

    call_id: str
    output: str
    success: bool = True


@dataclass(frozen=True)
class OperateRequest:
    """A vendor-agnostic request for one provider attempt."""

    model: str
    messages: list[HistoryItem]
    system: str | None = None
    instructions: str | None = None
    tools: list[ToolDefinition] | None = None
    format: dict[str, Any] | None = None
    provider_options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UsageItem:
    """Normalized token accounting for a turn or a whole attempt."""

    input: int = 0
    output: int = 0
    reasoning: int = 0
    total: int = 0
    provider: str = ""
    model: str = ""

    def __add__(self, other: UsageItem) -> UsageItem:
        if not isinstance(other, UsageItem):
            return NotImplemented
        return UsageItem(
            input=self.input + other.input,
            output=self.output + other.output,
            reasoning=self.reasoning + other.reasoning,
            total=self.total + other.total,
            provider=self.provider or other.provider,
            model=self.model or other.model,
        )


@dataclass(frozen=True)
class ParsedResponse:
    """The vendor-independent reading of one response."""

    content: str | None
    has_tool_calls: bool
    stop_reason: str | None
    usage: UsageItem


class ErrorCategory(str, Enum):
    """Error taxonomy used for retry and fallback decisions."""

    RATE_LIMIT = "rate_limit"
    RETRYABLE = "retryable"
    UNRECOVERABLE = "unrecoverable"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ClassifiedError:
    """An exception paired with its retry classification."""

    error: BaseException
    category: ErrorCategory
    should_retry: bool
    suggested_delay_ms: int | None = None
