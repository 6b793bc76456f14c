"""Schema normalization: natural shorthand, pydantic models, JSON Schema.

Natural shorthand lets callers describe output without writing JSON Schema::

    {"title": str, "score": float, "tags": [str], "mood": ["happy", "sad"]}

Python types map to JSON types, a list of strings is an enum, a one-element
list is an array of that element, ``{}`` is any object and ``[]`` any array.
"""

from __future__ import annotations

from copy import deepcopy
from typing import Any

from pydantic import BaseModel

from castor.errors import ConfigurationError

_JSON_TYPES = frozenset(
    {"string", "number", "integer", "boolean", "object", "array", "null"}
)
_META_KEYS = ("$schema", "$id")
_COMBINATOR_KEYS = ("anyOf", "oneOf", "allOf")

_TYPE_NAMES: dict[Any, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
    dict: "object",
    list: "array",
}
_STRING_ALIASES: dict[str, str] = {
    "string": "string",
    "str": "string",
    "number": "number",
    "float": "number",
    "integer": "integer",
    "int": "integer",
    "boolean": "boolean",
    "bool": "boolean",
    "object": "object",
    "array": "array",
}


def is_json_schema(value: Any) -> bool:
    """Return True when *value* already looks like a JSON Schema object."""
    if not isinstance(value, dict):
        return False
    if "$schema" in value or isinstance(value.get("$ref"), str):
        return True
    schema_type = value.get("type")
    if isinstance(schema_type, str) and schema_type in _JSON_TYPES:
        return True
    if isinstance(schema_type, list) and schema_type and all(
        t in _JSON_TYPES for t in schema_type
    ):
        return True
    properties = value.get("properties")
    if isinstance(properties, dict) and all(
        isinstance(p, dict) for p in properties.values()
    ):
        return True
    return any(
        isinstance(value.get(key), list)
        and all(isinstance(s, dict) for s in value[key])
        for key in _COMBINATOR_KEYS
    )


def natural_to_json_schema(natural: Any) -> dict[str, Any]:
    """Convert natural shorthand into JSON Schema."""
    if isinstance(natural, type) and natural in _TYPE_NAMES:
        return {"type": _TYPE_NAMES[natural]}

    if isinstance(natural, type) and issubclass(natural, BaseModel):
        return strip_meta(natural.model_json_schema())

    if isinstance(natural, str):
        alias = _STRING_ALIASES.get(natural.strip().lower())
        if alias is None:
            raise ConfigurationError(
                f"Unknown schema shorthand: {natural!r}",
                hint="Use a Python type (str, int, ...) or a JSON type name.",
            )
        return {"type": alias}

    if isinstance(natural, list):
        if not natural:
            return {"type": "array"}
        if all(isinstance(item, str) for item in natural) and not (
            len(natural) == 1 and natural[0].lower() in _STRING_ALIASES
        ):
            return {"type": "string", "enum": list(natural)}
        if len(natural) == 1:
            return {"type": "array", "items": natural_to_json_schema(natural[0])}
        raise ConfigurationError(
            "Array shorthand takes one element type or a list of enum strings",
            hint="Use [str] for a list of strings or ['a', 'b'] for an enum.",
        )

    if isinstance(natural, dict):
        if not natural:
            return {"type": "object"}
        properties = {
            str(key): natural_to_json_schema(value) for key, value in natural.items()
        }
        return {
            "type": "object",
            "properties": properties,
            "required": list(properties),
        }

    raise ConfigurationError(
        f"Unsupported schema shorthand: {natural!r}",
    )


def strip_meta(schema: dict[str, Any]) -> dict[str, Any]:
    """Drop top-level meta keys that validators and vendors reject."""
    cleaned = {k: v for k, v in schema.items() if k not in _META_KEYS}
    return cleaned


def to_json_schema(format: Any) -> dict[str, Any]:  # noqa: A002
    """Normalize any accepted format value into a JSON Schema object."""
    if isinstance(format, type) and issubclass(format, BaseModel):
        return strip_meta(format.model_json_schema())

    if isinstance(format, dict) and format.get("type") == "json_schema":
        inner = format.get("schema")
        if isinstance(inner, dict):
            return strip_meta(deepcopy(inner))
        schema = deepcopy(format)
        schema["type"] = "object"
        schema.pop("name", None)
        schema.pop("strict", None)
        return strip_meta(schema)

    if is_json_schema(format):
        return strip_meta(deepcopy(format))

    return natural_to_json_schema(format)


def wrap_value_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Return an object schema, nesting scalar and array schemas under ``value``."""
    if schema.get("type") == "object":
        return dict(schema)
    return {
        "type": "object",
        "properties": {"value": dict(schema)},
        "required": ["value"],
    }


def to_strict_schema(schema: dict[str, Any]) -> dict[str, Any]:
    """Normalize a JSON schema for strict structured-output requirements.

    For all object nodes, ``additionalProperties`` is False and every defined
    property is listed in ``required``.
    """

    def walk(node: Any) -> Any:
        if isinstance(node, list):
            return [walk(item) for item in node]
        if not isinstance(node, dict):
            return node

        updated: dict[str, Any] = {key: walk(value) for key, value in node.items()}

        if updated.get("type") == "object" or "properties" in updated:
            properties = updated.get("properties", {})
            if isinstance(properties, dict):
                updated["additionalProperties"] = False
                updated["required"] = list(properties.keys())

        return updated

    return walk(deepcopy(schema))
