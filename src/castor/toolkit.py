"""Toolkit: a registry of callable tools invoked by name."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
import inspect
import json
import logging
from typing import Any

from castor.constants import EXPLANATION_ARGUMENT, STRUCTURED_OUTPUT_TOOL_NAME
from castor.errors import ConfigurationError
from castor.providers.models import ToolDefinition
from castor.schema import to_json_schema

logger = logging.getLogger(__name__)

ToolFunction = Callable[..., Any]

_EXPLANATION_SCHEMA: dict[str, Any] = {
    "type": "string",
    "description": (
        "Clearly state why the tool is being called and what larger question "
        "it helps answer."
    ),
}


class ToolNotFoundError(LookupError):
    """Raised when the model calls a tool the toolkit does not hold."""


@dataclass(frozen=True)
class Tool:
    """A callable tool.

    ``parameters`` may be a JSON Schema object or natural shorthand. Dict
    arguments are passed to ``call`` as keyword arguments; anything else
    (including arguments that are not valid JSON) is passed positionally.
    """

    name: str
    description: str
    call: ToolFunction
    parameters: Any = field(default_factory=lambda: {"type": "object", "properties": {}})

    def definition(self, *, explain: bool = False) -> ToolDefinition:
        parameters = to_json_schema(self.parameters)
        if parameters.get("type") != "object":
            raise ConfigurationError(
                f"Tool {self.name!r} parameters must describe an object",
            )
        if explain:
            properties = dict(parameters.get("properties", {}))
            properties[EXPLANATION_ARGUMENT] = _EXPLANATION_SCHEMA
            required = [*parameters.get("required", []), EXPLANATION_ARGUMENT]
            parameters = {**parameters, "properties": properties, "required": required}
        return ToolDefinition(
            name=self.name, description=self.description, parameters=parameters
        )


def _check_name(name: str) -> None:
    if not name:
        raise ConfigurationError("Tool name must be a non-empty string")
    if name == STRUCTURED_OUTPUT_TOOL_NAME:
        raise ConfigurationError(
            f"Tool name {STRUCTURED_OUTPUT_TOOL_NAME!r} is reserved",
            hint="Rename the tool; this name carries structured output.",
        )


class Toolkit:
    """Holds tools and executes them by name."""

    def __init__(self, tools: Iterable[Tool] = (), *, explain: bool = False) -> None:
        self.explain = explain
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            _check_name(tool.name)
            if tool.name in self._tools:
                raise ConfigurationError(
                    f"Duplicate tool name: {tool.name!r}",
                    hint="Tool names must be unique within one request.",
                )
            self._tools[tool.name] = tool

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    @property
    def tools(self) -> list[ToolDefinition]:
        """Definitions advertised to the model, without the callables."""
        return [tool.definition(explain=self.explain) for tool in self._tools.values()]

    def extend(self, tools: Iterable[Tool], *, replace: bool = True) -> Toolkit:
        """Add tools in place; existing names are replaced unless ``replace=False``."""
        for tool in tools:
            _check_name(tool.name)
            if tool.name in self._tools:
                if not replace:
                    logger.warning("Tool %r already registered; keeping existing", tool.name)
                    continue
                logger.debug("Replacing tool %r", tool.name)
            self._tools[tool.name] = tool
        return self

    async def call(self, *, name: str, arguments: str | dict[str, Any] | None) -> Any:
        """Run the named tool and return its (awaited) result."""
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(f"Tool {name!r} not found")

        parsed: Any = arguments
        if isinstance(arguments, str):
            try:
                parsed = json.loads(arguments) if arguments.strip() else {}
            except json.JSONDecodeError:
                logger.debug("Tool %r arguments are not JSON; passing raw string", name)
                parsed = arguments
        elif arguments is None:
            parsed = {}

        if isinstance(parsed, dict):
            if self.explain:
                parsed = {k: v for k, v in parsed.items() if k != EXPLANATION_ARGUMENT}
            result = tool.call(**parsed)
        else:
            result = tool.call(parsed)

        if inspect.isawaitable(result):
            result = await result
        return result
