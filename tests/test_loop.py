"""Tool execution loop behavior: turns, tool calls, structured output."""

from __future__ import annotations

import json

import pytest

from castor import (
    Config,
    FunctionCall,
    FunctionCallOutput,
    Llm,
    Message,
    OperateStatus,
    Options,
    SchemaValidationError,
    Tool,
    ToolExecutionError,
)
from castor.history import process_input
from castor.loop import ToolExecutionLoop, serialize_tool_output
from castor.structured import OutputSchema
from castor.toolkit import Toolkit
from castor.usage import UsageAccumulator
from tests.helpers import ScriptedAdapter, text_response, tool_response

pytestmark = pytest.mark.unit


def _llm(adapter: ScriptedAdapter) -> Llm:
    return Llm(Config(use_mock=True), adapter=adapter)


def _weather_tool(calls: list[str] | None = None) -> Tool:
    def get_weather(city: str) -> dict[str, str]:
        if calls is not None:
            calls.append(city)
        return {"city": city, "forecast": "sunny"}

    return Tool(
        name="get_weather",
        description="Current weather for a city",
        call=get_weather,
        parameters={"city": str},
    )


@pytest.mark.asyncio
async def test_single_turn_text_completes_without_tools() -> None:
    adapter = ScriptedAdapter(script=[text_response("Hello there")])

    result = await _llm(adapter).operate("Hi")

    assert result.status is OperateStatus.COMPLETED
    assert result.completed
    assert result.content == "Hello there"
    assert result.fallback_attempts == 1
    assert result.fallback_used is False
    assert adapter.client.calls == 1
    assert result.history == [
        Message(role="user", content="Hi"),
        Message(role="assistant", content="Hello there"),
    ]
    assert result.output == [Message(role="assistant", content="Hello there")]


@pytest.mark.asyncio
async def test_tool_call_runs_and_result_goes_back_to_model() -> None:
    seen: list[str] = []
    adapter = ScriptedAdapter(
        script=[
            tool_response(("get_weather", {"city": "Oslo"}, "c1")),
            text_response("It is sunny in Oslo."),
        ]
    )

    result = await _llm(adapter).operate(
        "Weather in Oslo?", Options(tools=[_weather_tool(seen)], turns=True)
    )

    assert result.completed
    assert result.content == "It is sunny in Oslo."
    assert seen == ["Oslo"]
    assert adapter.client.calls == 2

    second = adapter.client.requests[1]["messages"]
    assert second[-2] == {
        "type": "function_call",
        "name": "get_weather",
        "arguments": json.dumps({"city": "Oslo"}),
        "call_id": "c1",
    }
    assert second[-1]["type"] == "function_call_output"
    assert json.loads(second[-1]["output"]) == {"city": "Oslo", "forecast": "sunny"}

    assert result.output == [
        FunctionCall(name="get_weather", arguments='{"city": "Oslo"}', call_id="c1"),
        FunctionCallOutput(call_id="c1", output=second[-1]["output"]),
        Message(role="assistant", content="It is sunny in Oslo."),
    ]


@pytest.mark.asyncio
async def test_each_tool_call_executes_exactly_once() -> None:
    seen: list[str] = []
    adapter = ScriptedAdapter(
        script=[
            tool_response(
                ("get_weather", {"city": "Oslo"}, "c1"),
                ("get_weather", {"city": "Lima"}, "c2"),
            ),
            text_response("done"),
        ]
    )

    result = await _llm(adapter).operate(
        "Compare", Options(tools=[_weather_tool(seen)], turns=True)
    )

    assert result.completed
    assert seen == ["Oslo", "Lima"]
    call_ids = [
        m["call_id"]
        for m in adapter.client.requests[1]["messages"]
        if m.get("type") == "function_call_output"
    ]
    assert call_ids == ["c1", "c2"]


@pytest.mark.asyncio
async def test_turn_limit_returns_incomplete_without_raising() -> None:
    adapter = ScriptedAdapter(
        script=[tool_response(("get_weather", {"city": "Oslo"})) for _ in range(5)]
    )

    result = await _llm(adapter).operate(
        "Loop forever", Options(tools=[_weather_tool()], turns=1)
    )

    assert result.status is OperateStatus.INCOMPLETE
    assert result.error is not None
    assert result.error.status == 429
    assert "exceeded 1 turns" in result.error.detail
    # One initial request plus one per allowed round.
    assert adapter.client.calls == 2
    assert isinstance(result.history[-1], FunctionCallOutput)


@pytest.mark.parametrize("turns", [1, 3, 5])
@pytest.mark.asyncio
async def test_vendor_calls_never_exceed_turn_budget_plus_one(turns: int) -> None:
    adapter = ScriptedAdapter(
        script=[tool_response(("get_weather", {"city": "Oslo"})) for _ in range(20)]
    )

    result = await _llm(adapter).operate(
        "Loop", Options(tools=[_weather_tool()], turns=turns)
    )

    assert result.status is OperateStatus.INCOMPLETE
    assert adapter.client.calls == turns + 1


@pytest.mark.asyncio
async def test_tool_calls_without_toolkit_complete_with_text() -> None:
    adapter = ScriptedAdapter(
        script=[tool_response(("get_weather", {"city": "Oslo"}), text="thinking")]
    )

    result = await _llm(adapter).operate("Hi")

    assert result.completed
    assert result.content == "thinking"
    assert adapter.client.calls == 1


@pytest.mark.asyncio
async def test_tool_failure_raises_tool_execution_error() -> None:
    def explode(city: str) -> str:
        raise ValueError(f"no data for {city}")

    errors: list[BaseException] = []
    adapter = ScriptedAdapter(
        script=[tool_response(("get_weather", {"city": "Oslo"}, "c9"))]
    )
    options = Options(
        tools=[Tool("get_weather", "Weather", explode, {"city": str})],
        hooks={"on_tool_error": lambda **kw: errors.append(kw["error"])},
        turns=True,
    )

    with pytest.raises(ToolExecutionError) as exc_info:
        await _llm(adapter).operate("Weather?", options)

    assert exc_info.value.tool_name == "get_weather"
    assert exc_info.value.call_id == "c9"
    assert isinstance(exc_info.value.__cause__, ValueError)
    assert len(errors) == 1 and isinstance(errors[0], ValueError)
    assert adapter.client.calls == 1


@pytest.mark.asyncio
async def test_structured_output_tool_ends_loop_with_validated_content() -> None:
    adapter = ScriptedAdapter(
        script=[
            tool_response(("get_weather", {"city": "Oslo"})),
            tool_response(("structured_output", {"city": "Oslo", "temp": 21})),
            text_response("never reached"),
        ]
    )

    result = await _llm(adapter).operate(
        "Weather?",
        Options(
            tools=[_weather_tool()],
            format={"city": str, "temp": int},
            turns=True,
        ),
    )

    assert result.completed
    assert result.content == {"city": "Oslo", "temp": 21}
    assert adapter.client.calls == 2
    assert "structured_output" in adapter.client.requests[0]["tools"]
    assert result.history[-1] == Message(
        role="assistant", content=json.dumps({"city": "Oslo", "temp": 21})
    )


@pytest.mark.asyncio
async def test_structured_output_wins_over_sibling_tool_calls() -> None:
    seen: list[str] = []
    adapter = ScriptedAdapter(
        script=[
            tool_response(
                ("get_weather", {"city": "Oslo"}),
                ("structured_output", {"answer": "sunny"}),
            )
        ]
    )

    result = await _llm(adapter).operate(
        "Weather?",
        Options(tools=[_weather_tool(seen)], format={"answer": str}, turns=True),
    )

    assert result.content == {"answer": "sunny"}
    assert seen == []


@pytest.mark.asyncio
async def test_structured_output_validation_failure_raises() -> None:
    adapter = ScriptedAdapter(
        script=[tool_response(("structured_output", {"temp": "warm"}))]
    )

    with pytest.raises(SchemaValidationError) as exc_info:
        await _llm(adapter).operate("Temp?", Options(format={"temp": int}))

    assert exc_info.value.errors


@pytest.mark.asyncio
async def test_structured_output_from_json_text() -> None:
    adapter = ScriptedAdapter(script=[text_response('```json\n{"mood": "happy"}\n```')])

    result = await _llm(adapter).operate(
        "Mood?", Options(format={"mood": ["happy", "sad"]})
    )

    assert result.content == {"mood": "happy"}


@pytest.mark.asyncio
async def test_scalar_schema_unwraps_value_argument() -> None:
    adapter = ScriptedAdapter(
        script=[tool_response(("structured_output", {"value": ["a", "b"]}))]
    )

    result = await _llm(adapter).operate("List", Options(format=[str]))

    assert result.content == ["a", "b"]


@pytest.mark.asyncio
async def test_usage_sums_turns_into_one_item() -> None:
    adapter = ScriptedAdapter(
        script=[
            tool_response(("get_weather", {"city": "Oslo"})),
            text_response("done", input_tokens=7, output_tokens=3),
        ]
    )

    result = await _llm(adapter).operate(
        "Weather?", Options(tools=[_weather_tool()], turns=True)
    )

    assert len(result.usage) == 1
    usage = result.usage[0]
    assert (usage.input, usage.output, usage.total) == (17, 8, 25)
    assert usage.provider == "mock"
    assert result.total_usage == 25


@pytest.mark.asyncio
async def test_reasoning_is_collected_per_turn() -> None:
    first = tool_response(("get_weather", {"city": "Oslo"}))
    first["reasoning"] = "Need the weather first."
    second = text_response("sunny")
    second["reasoning"] = "Now answer."
    adapter = ScriptedAdapter(script=[first, second])

    result = await _llm(adapter).operate(
        "Weather?", Options(tools=[_weather_tool()], turns=True)
    )

    assert result.reasoning == ["Need the weather first.", "Now answer."]


@pytest.mark.asyncio
async def test_loop_does_not_mutate_processed_history() -> None:
    adapter = ScriptedAdapter(
        script=[tool_response(("get_weather", {"city": "Oslo"})), text_response("ok")]
    )
    processed = process_input("Weather?")
    loop = ToolExecutionLoop(
        adapter,
        adapter.client,
        model="m",
        toolkit=Toolkit([_weather_tool()]),
        max_turns=3,
    )

    outcome = await loop.run(processed, UsageAccumulator("mock", "m"))

    assert processed.history == [Message(role="user", content="Weather?")]
    assert len(outcome.history) == 4


def test_build_request_adds_synthetic_tool_for_schema() -> None:
    adapter = ScriptedAdapter()
    loop = ToolExecutionLoop(
        adapter,
        adapter.client,
        model="m",
        output_schema=OutputSchema.from_format({"answer": str}),
    )

    request = loop.build_request(process_input("q", system="Be brief"))

    assert [t.name for t in request.tools or []] == ["structured_output"]
    assert request.format == {
        "type": "object",
        "properties": {"answer": {"type": "string"}},
        "required": ["answer"],
    }
    assert request.system == "Be brief"


def test_serialize_tool_output_handles_models_and_plain_values() -> None:
    from pydantic import BaseModel

    class Reading(BaseModel):
        value: int

    assert serialize_tool_output(Reading(value=3)) == '{"value":3}'
    assert serialize_tool_output("text") == '"text"'
    assert serialize_tool_output({"a": 1}) == '{"a": 1}'
