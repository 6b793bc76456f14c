"""Structured output: the synthetic tool and final-content validation."""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import re
from typing import Any

import jsonschema
from pydantic import BaseModel, ValidationError

from castor.constants import STRUCTURED_OUTPUT_DESCRIPTION, STRUCTURED_OUTPUT_TOOL_NAME
from castor.errors import SchemaValidationError
from castor.providers.models import ToolDefinition
from castor.schema import to_json_schema, wrap_value_schema

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?```", re.DOTALL | re.IGNORECASE)


@dataclass(frozen=True)
class OutputSchema:
    """A requested output format, normalized once per call."""

    json_schema: dict[str, Any]
    model: type[BaseModel] | None = None

    @classmethod
    def from_format(cls, format: Any) -> OutputSchema:  # noqa: A002
        model = (
            format
            if isinstance(format, type) and issubclass(format, BaseModel)
            else None
        )
        return cls(json_schema=to_json_schema(format), model=model)


def structured_output_tool(
    schema: dict[str, Any], *, description: str = STRUCTURED_OUTPUT_DESCRIPTION
) -> ToolDefinition:
    """Build the reserved tool whose arguments carry the final answer."""
    # Tool parameters must be an object.
    parameters = wrap_value_schema(schema)
    return ToolDefinition(
        name=STRUCTURED_OUTPUT_TOOL_NAME,
        description=description,
        parameters=parameters,
    )


def parse_json_text(text: str) -> Any:
    """Parse JSON from model text, tolerating markdown code fences."""
    stripped = text.strip()
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        pass
    match = _FENCE_RE.search(stripped)
    if match:
        return json.loads(match.group(1).strip())
    raise json.JSONDecodeError("No JSON object found", stripped, 0)


def validate(output_schema: OutputSchema, value: Any) -> Any:
    """Validate *value* and return the content surfaced to the caller.

    Pydantic formats return the model instance. Everything else returns the
    validated JSON value unchanged.
    """
    if output_schema.model is not None:
        try:
            return output_schema.model.model_validate(value)
        except ValidationError as exc:
            raise SchemaValidationError(
                "Structured output does not match the requested model",
                errors=[str(e["msg"]) for e in exc.errors()],
                value=value,
            ) from exc

    validator_cls = jsonschema.validators.validator_for(output_schema.json_schema)
    validator = validator_cls(output_schema.json_schema)
    errors = sorted(validator.iter_errors(value), key=lambda e: list(e.path))
    if errors:
        raise SchemaValidationError(
            "Structured output does not match the requested schema",
            errors=[e.message for e in errors],
            value=value,
            hint="The model returned malformed output; try a stronger model or a simpler schema.",
        )
    return value


def _unwrap_value(output_schema: OutputSchema, value: Any) -> Any:
    if output_schema.json_schema.get("type") == "object":
        return value
    if isinstance(value, dict) and set(value) == {"value"}:
        return value["value"]
    return value


def extract_content(
    output_schema: OutputSchema,
    *,
    structured_args: dict[str, Any] | None,
    text: str | None,
) -> Any:
    """Locate the structured answer and validate it.

    Synthetic tool arguments win. Otherwise the response text is parsed as
    JSON (native JSON mode). Missing or unparsable output is a validation
    failure.
    """
    if structured_args is not None:
        return validate(output_schema, _unwrap_value(output_schema, structured_args))

    if not text:
        raise SchemaValidationError(
            "Model returned no structured output",
            hint="The model finished without calling the structured_output tool.",
        )
    try:
        value = parse_json_text(text)
    except json.JSONDecodeError as exc:
        logger.debug("Structured output text is not JSON: %.200s", text)
        raise SchemaValidationError(
            "Structured output is not valid JSON", value=text
        ) from exc
    return validate(output_schema, _unwrap_value(output_schema, value))
