"""Lifecycle hooks.

Hooks observe a call; they never steer it. A hook that raises is logged and
ignored so a faulty observer cannot corrupt the tool loop. Hooks may be plain
functions or coroutines and receive keyword arguments only.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, fields
import inspect
import logging
from typing import Any

logger = logging.getLogger(__name__)

Hook = Callable[..., Any]


@dataclass(frozen=True)
class Hooks:
    """Optional callbacks fired around model requests and tool calls.

    Keyword arguments passed to each hook:

    - ``before_each_model_request``: provider, model, request, turn
    - ``after_each_model_response``: provider, model, response, usage, turn
    - ``before_each_tool``: tool_name, arguments
    - ``after_each_tool``: tool_name, arguments, result
    - ``on_tool_error``: tool_name, arguments, error
    - ``on_retryable_model_error``: provider, model, error, attempt
    - ``on_unrecoverable_model_error``: provider, model, error
    """

    before_each_model_request: Hook | None = None
    after_each_model_response: Hook | None = None
    before_each_tool: Hook | None = None
    after_each_tool: Hook | None = None
    on_tool_error: Hook | None = None
    on_retryable_model_error: Hook | None = None
    on_unrecoverable_model_error: Hook | None = None

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if value is not None and not callable(value):
                raise TypeError(f"Hooks.{f.name} must be callable")

    @classmethod
    def from_mapping(cls, mapping: dict[str, Hook]) -> Hooks:
        known = {f.name for f in fields(cls)}
        unknown = set(mapping) - known
        if unknown:
            raise TypeError(f"Unknown hooks: {', '.join(sorted(unknown))}")
        return cls(**mapping)


class HookRunner:
    """Fire hooks with failures sandboxed."""

    def __init__(self, hooks: Hooks | None = None) -> None:
        self.hooks = hooks or Hooks()

    async def fire(self, name: str, **payload: Any) -> None:
        hook = getattr(self.hooks, name, None)
        if hook is None:
            return
        try:
            result = hook(**payload)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Hook %s failed: %s", name, exc, exc_info=True)
