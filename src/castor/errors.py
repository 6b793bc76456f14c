"""Exception hierarchy for castor.

Vendor SDK errors are never wrapped: they propagate untouched so callers see
the real diagnostic. The classes below cover failures castor detects itself.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Iterator


class CastorError(Exception):
    """Base exception for all castor errors."""

    def __init__(self, message: str, *, hint: str | None = None) -> None:
        super().__init__(message)
        self.hint = hint


class ConfigurationError(CastorError):
    """Configuration validation or resolution failed."""


class InternalError(CastorError):
    """A castor internal error (bug) or invariant violation."""


class ToolExecutionError(CastorError):
    """A tool raised while the model was waiting on its result.

    The original exception is available as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        *,
        tool_name: str,
        call_id: str | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.tool_name = tool_name
        self.call_id = call_id


class SchemaValidationError(CastorError):
    """Structured output did not satisfy the requested schema."""

    def __init__(
        self,
        message: str,
        *,
        errors: list[str] | None = None,
        value: Any = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.errors = errors or []
        self.value = value


class APIError(CastorError):
    """API call failed in a way castor detected itself.

    Carries retry metadata so the classifier can treat it like a vendor error.
    """

    def __init__(
        self,
        message: str,
        *,
        hint: str | None = None,
        retryable: bool | None = None,
        provider: str | None = None,
        phase: str | None = None,
    ) -> None:
        super().__init__(message, hint=hint)
        self.retryable = retryable
        self.provider = provider
        self.phase = phase


def _walk_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield *exc* and its ``__cause__``/``__context__`` chain, with cycle protection."""
    seen: set[int] = set()
    stack: list[BaseException] = [exc]
    while stack:
        cur = stack.pop()
        if id(cur) in seen:
            continue
        seen.add(id(cur))
        yield cur

        cause = cur.__cause__
        if isinstance(cause, BaseException):
            stack.append(cause)
        context = cur.__context__
        if isinstance(context, BaseException):
            stack.append(context)
