"""Input processing: history merging, system prompts, placeholders."""

from __future__ import annotations

import pytest

from castor._placeholders import substitute
from castor.errors import ConfigurationError
from castor.history import (
    FunctionCall,
    FunctionCallOutput,
    Message,
    coerce_history,
    history_item_from_dict,
    process_input,
)

pytestmark = pytest.mark.unit


def test_string_input_becomes_user_message() -> None:
    processed = process_input("Hello")

    assert processed.history == [Message(role="user", content="Hello")]
    assert processed.system is None
    assert processed.instructions is None


def test_history_is_prepended_and_system_goes_first() -> None:
    processed = process_input(
        "And now?",
        history=[
            {"role": "user", "content": "Hi"},
            {"role": "assistant", "content": "Hello"},
        ],
        system="Be terse",
    )

    assert processed.history == [
        Message(role="system", content="Be terse"),
        Message(role="user", content="Hi"),
        Message(role="assistant", content="Hello"),
        Message(role="user", content="And now?"),
    ]


def test_identical_system_message_is_not_duplicated() -> None:
    processed = process_input(
        [{"role": "system", "content": "Be terse"}, {"role": "user", "content": "Hi"}],
        system="Be terse",
    )

    assert [m.role for m in processed.history] == ["system", "user"]


def test_different_leading_system_message_is_replaced() -> None:
    processed = process_input(
        [{"role": "system", "content": "Old"}, {"role": "user", "content": "Hi"}],
        system="New",
    )

    assert processed.history[0] == Message(role="system", content="New")
    assert len(processed.history) == 2


def test_placeholders_fill_input_system_and_instructions() -> None:
    processed = process_input(
        "Summarize {{doc.title}}",
        data={"doc": {"title": "Dune"}, "lang": "French"},
        system="You write in {{lang}}",
        instructions="Mention {{doc.title}} once",
    )

    assert processed.history[-1].content == "Summarize Dune"
    assert processed.system == "You write in French"
    assert processed.instructions == "Mention Dune once"


def test_placeholder_substitution_can_be_disabled_per_field() -> None:
    processed = process_input(
        "Keep {{name}}",
        data={"name": "Ada"},
        system="Hi {{name}}",
        substitute_input=False,
    )

    assert processed.history[-1].content == "Keep {{name}}"
    assert processed.system == "Hi Ada"


def test_substitute_edge_cases() -> None:
    data = {"items": ["a", "b"], "count": 3, "nested": {"ok": True}}

    assert substitute("{{items.1}}", data) == "b"
    assert substitute("{{count}} items", data) == "3 items"
    assert substitute("{{nested}}", data) == '{"ok": true}'
    assert substitute("{{missing}} stays", data) == "{{missing}} stays"
    assert substitute("{{ count }}", data) == "3"
    assert substitute("no placeholders", None) == "no placeholders"


def test_history_dicts_cover_every_item_type() -> None:
    items = coerce_history(
        [
            {"role": "developer", "content": "rules"},
            {"role": "model", "content": [{"type": "text", "text": "hi"}]},
            {"type": "function_call", "name": "f", "arguments": {"x": 1}, "callId": "c1"},
            {"type": "function_call_output", "call_id": "c1", "output": {"y": 2}},
        ]
    )

    assert items == [
        Message(role="system", content="rules"),
        Message(role="assistant", content="hi"),
        FunctionCall(name="f", arguments='{"x": 1}', call_id="c1"),
        FunctionCallOutput(call_id="c1", output='{"y": 2}'),
    ]


@pytest.mark.parametrize(
    "raw",
    [
        {"type": "image", "url": "x"},
        {"role": "narrator", "content": "x"},
        {"type": "function_call", "name": "f"},
        {"type": "function_call_output", "output": "x"},
    ],
)
def test_malformed_history_items_are_rejected(raw) -> None:
    with pytest.raises(ConfigurationError):
        history_item_from_dict(raw)


def test_unsupported_history_values_are_rejected() -> None:
    with pytest.raises(ConfigurationError):
        coerce_history([42])  # type: ignore[list-item]
