"""castor: one operate() call across OpenAI, Anthropic, Gemini and OpenRouter.

Public API:
    - operate(): Run one call with tools, structured output and fallback
    - Llm: Reusable provider binding with its fallback chain
    - Config / Options: Configuration and per-call features
    - Tool / Toolkit: Callable tools the model may invoke
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from castor.config import Config, FallbackCandidate
from castor.errors import (
    APIError,
    CastorError,
    ConfigurationError,
    InternalError,
    SchemaValidationError,
    ToolExecutionError,
)
from castor.history import FunctionCall, FunctionCallOutput, HistoryItem, Message
from castor.hooks import Hooks
from castor.llm import Llm
from castor.options import Options, PlaceholderOptions
from castor.providers.models import ErrorCategory, UsageItem
from castor.result import OperateError, OperateResult, OperateStatus
from castor.retry import RetryPolicy
from castor.toolkit import Tool, Toolkit

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("castor-llm")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("castor").addHandler(logging.NullHandler())


async def operate(
    input: str | HistoryItem | Sequence[HistoryItem | Mapping[str, Any]],  # noqa: A002
    *,
    config: Config | None = None,
    options: Options | None = None,
) -> OperateResult:
    """Run a single call and release its clients afterwards.

    Args:
        input: A prompt, a history item, or a list of history items/dicts.
        config: Provider, model, key and fallback chain. Defaults resolve
            from the environment.
        options: Per-call features (tools, format, hooks, turns, ...).

    Returns:
        OperateResult with content, history, usage and fallback details.

    Example:
        config = Config(provider="openai", fallback=[FallbackCandidate("anthropic")])
        result = await operate("Name three rivers", config=config)
        print(result.content)
    """
    async with Llm(config) as llm:
        return await llm.operate(input, options)


__all__ = [
    "APIError",
    "CastorError",
    "Config",
    "ConfigurationError",
    "ErrorCategory",
    "FallbackCandidate",
    "FunctionCall",
    "FunctionCallOutput",
    "HistoryItem",
    "Hooks",
    "InternalError",
    "Llm",
    "Message",
    "OperateError",
    "OperateResult",
    "OperateStatus",
    "Options",
    "PlaceholderOptions",
    "RetryPolicy",
    "SchemaValidationError",
    "Tool",
    "ToolExecutionError",
    "Toolkit",
    "UsageItem",
    "operate",
]
