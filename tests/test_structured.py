"""Schema normalization and structured output validation."""

from __future__ import annotations

from hypothesis import given
from hypothesis import strategies as st
from pydantic import BaseModel
import pytest

from castor.errors import ConfigurationError, SchemaValidationError
from castor.schema import (
    is_json_schema,
    natural_to_json_schema,
    to_json_schema,
    to_strict_schema,
)
from castor.structured import (
    OutputSchema,
    extract_content,
    parse_json_text,
    structured_output_tool,
    validate,
)

pytestmark = pytest.mark.unit


class Verdict(BaseModel):
    label: str
    confidence: float


# =============================================================================
# Schema normalization
# =============================================================================


def test_natural_shorthand_converts_nested_structures() -> None:
    schema = natural_to_json_schema(
        {"title": str, "score": float, "tags": [str], "mood": ["happy", "sad"]}
    )

    assert schema == {
        "type": "object",
        "properties": {
            "title": {"type": "string"},
            "score": {"type": "number"},
            "tags": {"type": "array", "items": {"type": "string"}},
            "mood": {"type": "string", "enum": ["happy", "sad"]},
        },
        "required": ["title", "score", "tags", "mood"],
    }


@pytest.mark.parametrize(
    ("natural", "expected"),
    [
        (str, {"type": "string"}),
        (int, {"type": "integer"}),
        (bool, {"type": "boolean"}),
        ("number", {"type": "number"}),
        ({}, {"type": "object"}),
        ([], {"type": "array"}),
        (["string"], {"type": "array", "items": {"type": "string"}}),
    ],
)
def test_natural_scalars(natural, expected) -> None:
    assert natural_to_json_schema(natural) == expected


def test_unknown_shorthand_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        natural_to_json_schema("complex")
    with pytest.raises(ConfigurationError):
        natural_to_json_schema([str, int])


def test_json_schema_passes_through_without_meta_keys() -> None:
    schema = {
        "$schema": "https://json-schema.org/draft/2020-12/schema",
        "type": "object",
        "properties": {"a": {"type": "string"}},
    }

    assert is_json_schema(schema)
    assert to_json_schema(schema) == {
        "type": "object",
        "properties": {"a": {"type": "string"}},
    }


def test_dict_with_type_key_as_field_is_natural_shorthand() -> None:
    # "type" here is a field name, not a JSON Schema keyword.
    schema = to_json_schema({"type": str, "name": str})

    assert schema["properties"] == {"type": {"type": "string"}, "name": {"type": "string"}}


@pytest.mark.parametrize(
    "schema",
    [
        {"type": "string", "examples": ["Ada", "Bob"]},
        {
            "type": "object",
            "properties": {"tags": {"type": "array", "uniqueItems": True}},
            "examples": [{"tags": ["a"]}],
        },
        {"properties": {"a": {"type": "integer"}}, "dependentRequired": {}},
        {"anyOf": [{"type": "string"}, {"type": "null"}]},
        {"$ref": "#/$defs/Item", "$defs": {"Item": {"type": "string"}}},
    ],
)
def test_json_schema_with_uncommon_keywords_passes_through(schema) -> None:
    assert is_json_schema(schema)
    assert to_json_schema(schema) == schema


def test_openai_style_json_schema_wrapper_is_unwrapped() -> None:
    schema = to_json_schema(
        {"type": "json_schema", "name": "answer", "schema": {"type": "object"}}
    )

    assert schema == {"type": "object"}


def test_pydantic_model_schema() -> None:
    schema = to_json_schema(Verdict)

    assert schema["type"] == "object"
    assert set(schema["properties"]) == {"label", "confidence"}


def test_strict_schema_closes_every_object() -> None:
    strict = to_strict_schema(
        {
            "type": "object",
            "properties": {
                "inner": {"type": "object", "properties": {"x": {"type": "integer"}}},
                "note": {"type": "string"},
            },
            "required": ["inner"],
        }
    )

    assert strict["additionalProperties"] is False
    assert strict["required"] == ["inner", "note"]
    assert strict["properties"]["inner"]["additionalProperties"] is False
    assert strict["properties"]["inner"]["required"] == ["x"]


# =============================================================================
# Synthetic tool and extraction
# =============================================================================


def test_structured_output_tool_wraps_non_object_schema() -> None:
    tool = structured_output_tool({"type": "array", "items": {"type": "string"}})

    assert tool.name == "structured_output"
    assert tool.parameters == {
        "type": "object",
        "properties": {"value": {"type": "array", "items": {"type": "string"}}},
        "required": ["value"],
    }


def test_non_object_text_output_accepts_wrapped_and_bare_values() -> None:
    schema = OutputSchema.from_format([str])

    wrapped = extract_content(schema, structured_args=None, text='{"value": ["a", "b"]}')
    bare = extract_content(schema, structured_args=None, text='["a", "b"]')

    assert wrapped == bare == ["a", "b"]


def test_object_text_output_with_value_field_is_not_unwrapped() -> None:
    schema = OutputSchema.from_format({"value": int})

    assert extract_content(schema, structured_args=None, text='{"value": 3}') == {"value": 3}


def test_pydantic_format_returns_model_instance() -> None:
    schema = OutputSchema.from_format(Verdict)

    content = extract_content(
        schema, structured_args={"label": "spam", "confidence": 0.9}, text=None
    )

    assert content == Verdict(label="spam", confidence=0.9)


def test_pydantic_validation_failure_raises() -> None:
    schema = OutputSchema.from_format(Verdict)

    with pytest.raises(SchemaValidationError) as exc_info:
        validate(schema, {"label": "spam"})

    assert exc_info.value.value == {"label": "spam"}
    assert exc_info.value.errors


def test_json_schema_validation_collects_errors() -> None:
    schema = OutputSchema.from_format({"count": int, "name": str})

    with pytest.raises(SchemaValidationError) as exc_info:
        validate(schema, {"count": "three"})

    assert len(exc_info.value.errors) == 2


def test_missing_structured_output_is_a_validation_error() -> None:
    schema = OutputSchema.from_format({"a": str})

    with pytest.raises(SchemaValidationError, match="no structured output"):
        extract_content(schema, structured_args=None, text=None)

    with pytest.raises(SchemaValidationError, match="not valid JSON"):
        extract_content(schema, structured_args=None, text="not json at all")


def test_parse_json_text_accepts_fenced_blocks() -> None:
    assert parse_json_text('Here you go:\n```json\n{"a": 1}\n```') == {"a": 1}
    assert parse_json_text('  {"a": 2}  ') == {"a": 2}


@given(
    st.dictionaries(
        st.text(alphabet="abcdefghij", min_size=1, max_size=5),
        st.sampled_from([str, int, float, bool]),
        min_size=1,
        max_size=6,
    )
)
def test_natural_objects_require_every_key(natural) -> None:
    schema = natural_to_json_schema(natural)

    assert schema["type"] == "object"
    assert schema["required"] == list(natural)
    assert set(schema["properties"]) == set(natural)
