"""Per-call options for ``operate``."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal, Union

from castor.config import FallbackCandidate
from castor.constants import DEFAULT_MAX_TURNS, ENABLED_MAX_TURNS, MAX_TURNS_LIMIT
from castor.errors import ConfigurationError
from castor.hooks import Hooks
from castor.toolkit import Tool, Toolkit

if TYPE_CHECKING:
    from castor.history import HistoryItem

FallbackInput = Union[FallbackCandidate, Mapping[str, Any], str]


@dataclass(frozen=True)
class PlaceholderOptions:
    """Which fields receive ``data`` substitution."""

    input: bool = True
    instructions: bool = True
    system: bool = True


@dataclass(frozen=True)
class Options:
    """Optional features for one ``operate`` call."""

    #: Overrides the configured model for the primary provider.
    model: str | None = None
    system: str | None = None
    #: Appended to the final message.
    instructions: str | None = None
    #: Placeholder values for ``{{key}}`` templates.
    data: dict[str, Any] | None = None
    placeholders: PlaceholderOptions = field(default_factory=PlaceholderOptions)
    #: Prior conversation, prepended to the input.
    history: Sequence[HistoryItem | Mapping[str, Any]] | None = None
    tools: Toolkit | Sequence[Tool | Mapping[str, Any]] | None = None
    #: Pydantic model, JSON Schema dict, or natural shorthand.
    format: Any = None
    hooks: Hooks | Mapping[str, Any] | None = None
    #: ``None`` uses the configured chain; ``False`` disables it; a list replaces it.
    fallback: Sequence[FallbackInput] | Literal[False] | None = None
    #: Merged into the vendor request as-is.
    provider_options: dict[str, Any] = field(default_factory=dict)
    #: ``True`` enables multi-turn tool use; an int sets the round budget.
    turns: bool | int | None = None
    #: Ask the model to justify each tool call.
    explain: bool = False

    def __post_init__(self) -> None:
        """Validate option shapes early for clear errors."""
        for name in ("system", "instructions", "model"):
            value = getattr(self, name)
            if value is not None and not isinstance(value, str):
                raise ConfigurationError(f"{name} must be a string")

        if self.data is not None and not isinstance(self.data, Mapping):
            raise ConfigurationError(
                "data must be a mapping",
                hint="Pass data={'name': 'Ada'} to fill {{name}} placeholders.",
            )

        if isinstance(self.hooks, Mapping):
            try:
                object.__setattr__(self, "hooks", Hooks.from_mapping(dict(self.hooks)))
            except TypeError as exc:
                raise ConfigurationError(str(exc)) from exc

        if self.fallback is True:
            raise ConfigurationError(
                "fallback=True is not supported",
                hint="Pass a list of candidates, False, or leave it unset.",
            )

        if self.turns is not None and not isinstance(self.turns, (bool, int)):
            raise ConfigurationError(
                "turns must be a bool or an int",
                hint="Pass turns=True or turns=5 to allow multi-turn tool use.",
            )

        if not isinstance(self.provider_options, Mapping):
            raise ConfigurationError("provider_options must be a mapping")

    def max_turns(self) -> int:
        """Resolve ``turns`` into a round budget clamped to the allowed range."""
        if self.turns is None or self.turns is False:
            return DEFAULT_MAX_TURNS
        if self.turns is True:
            return ENABLED_MAX_TURNS
        return max(1, min(int(self.turns), MAX_TURNS_LIMIT))

    def toolkit(self) -> Toolkit | None:
        if self.tools is None:
            return None
        if isinstance(self.tools, Toolkit):
            return self.tools if len(self.tools) else None
        tools = [
            tool if isinstance(tool, Tool) else Tool(**dict(tool)) for tool in self.tools
        ]
        return Toolkit(tools, explain=self.explain) if tools else None

    def fallback_candidates(
        self, configured: Sequence[FallbackCandidate]
    ) -> list[FallbackCandidate]:
        if self.fallback is False:
            return []
        if self.fallback is None:
            return list(configured)
        return [FallbackCandidate.coerce(c) for c in self.fallback]
