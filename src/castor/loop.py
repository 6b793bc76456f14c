"""Tool execution loop: drive one provider attempt to completion.

States: request sent, then either complete or tool pending. Pending tools run
sequentially, their results are appended, and the next request goes out. The
loop ends when the model stops calling tools, when it calls the synthetic
``structured_output`` tool, or when the round budget is spent.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import json
import logging
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

from castor.constants import DEFAULT_MAX_TURNS, STRUCTURED_OUTPUT_TOOL_NAME
from castor.errors import InternalError, SchemaValidationError, ToolExecutionError
from castor.history import FunctionCall, FunctionCallOutput, HistoryItem, Message
from castor.hooks import HookRunner
from castor.providers.models import OperateRequest, ToolResult
from castor.result import OperateError, OperateStatus
from castor.retry import retry_async
from castor.structured import extract_content

if TYPE_CHECKING:
    from castor.history import ProcessedInput
    from castor.providers.base import ProviderAdapter
    from castor.providers.models import ToolCall
    from castor.retry import RetryPolicy
    from castor.structured import OutputSchema
    from castor.toolkit import Toolkit
    from castor.usage import UsageAccumulator

logger = logging.getLogger(__name__)

TURN_LIMIT_STATUS = 429
TURN_LIMIT_TITLE = "Too Many Requests"


@dataclass
class LoopOutcome:
    """What one provider attempt produced."""

    status: OperateStatus
    content: Any
    history: list[HistoryItem]
    output: list[HistoryItem] = field(default_factory=list)
    responses: list[Any] = field(default_factory=list)
    reasoning: list[str] = field(default_factory=list)
    error: OperateError | None = None


def serialize_tool_output(value: Any) -> str:
    if isinstance(value, BaseModel):
        return value.model_dump_json()
    return json.dumps(value, default=str)


class ToolExecutionLoop:
    """Run request/response turns against one adapter."""

    def __init__(
        self,
        adapter: ProviderAdapter,
        client: Any,
        *,
        model: str,
        toolkit: Toolkit | None = None,
        output_schema: OutputSchema | None = None,
        hooks: HookRunner | None = None,
        max_turns: int = DEFAULT_MAX_TURNS,
        retry: RetryPolicy | None = None,
        provider_options: dict[str, Any] | None = None,
    ) -> None:
        self.adapter = adapter
        self.client = client
        self.model = model
        self.toolkit = toolkit
        self.output_schema = output_schema
        self.hooks = hooks or HookRunner()
        self.max_turns = max_turns
        self.retry = retry
        self.provider_options = provider_options or {}

    def build_request(self, processed: ProcessedInput) -> OperateRequest:
        json_schema = self.output_schema.json_schema if self.output_schema else None
        tools = self.adapter.format_tools(
            self.toolkit.tools if self.toolkit else [], json_schema
        )
        return OperateRequest(
            model=self.model,
            messages=list(processed.history),
            system=processed.system,
            instructions=processed.instructions,
            tools=tools or None,
            format=json_schema,
            provider_options=dict(self.provider_options),
        )

    async def run(
        self, processed: ProcessedInput, usage: UsageAccumulator
    ) -> LoopOutcome:
        """Run turns until completion or the round budget is exceeded.

        Raises ``ToolExecutionError`` when a tool fails and
        ``SchemaValidationError`` when structured output is invalid. Vendor
        errors propagate untouched.
        """
        vendor_request = self.adapter.build_request(self.build_request(processed))
        outcome = LoopOutcome(
            status=OperateStatus.INCOMPLETE,
            content=None,
            history=list(processed.history),
        )
        rounds = 0
        turn = 0

        while True:
            turn += 1
            response = await self._send(vendor_request, turn)
            outcome.responses.append(response)

            turn_usage = self.adapter.extract_usage(response, self.model)
            usage.add(turn_usage)
            await self.hooks.fire(
                "after_each_model_response",
                provider=self.adapter.name,
                model=self.model,
                response=response,
                usage=turn_usage,
                turn=turn,
            )
            reasoning = self.adapter.extract_reasoning(response)
            if reasoning:
                outcome.reasoning.append(reasoning)
            parsed = self.adapter.parse_response(response)
            logger.debug(
                "%s turn %d: stop_reason=%s tool_calls=%s",
                self.adapter.name,
                turn,
                parsed.stop_reason,
                parsed.has_tool_calls,
            )

            if self.output_schema is not None and self.adapter.has_structured_output(
                response
            ):
                return self._complete_structured(outcome, response)

            calls = [
                call
                for call in self.adapter.extract_tool_calls(response)
                if call.name != STRUCTURED_OUTPUT_TOOL_NAME
            ]
            if self.toolkit is None or not calls or self.adapter.is_complete(response):
                return self._complete(outcome, response, parsed.content)

            for index, call in enumerate(calls):
                result = await self._execute_tool(call)
                vendor_request = self.adapter.append_tool_result(
                    vendor_request, call, result, continue_batch=index > 0
                )
                self._record(
                    outcome,
                    FunctionCall(
                        name=call.name, arguments=call.arguments, call_id=call.call_id
                    ),
                    FunctionCallOutput(call_id=call.call_id, output=result.output),
                )

            rounds += 1
            if rounds > self.max_turns:
                logger.debug(
                    "%s exceeded %d turn(s) with a tool call pending",
                    self.adapter.name,
                    self.max_turns,
                )
                outcome.status = OperateStatus.INCOMPLETE
                outcome.error = OperateError(
                    status=TURN_LIMIT_STATUS,
                    title=TURN_LIMIT_TITLE,
                    detail=(
                        "Model requested function call but exceeded "
                        f"{self.max_turns} turns"
                    ),
                )
                return outcome

    async def _send(self, vendor_request: dict[str, Any], turn: int) -> Any:
        await self.hooks.fire(
            "before_each_model_request",
            provider=self.adapter.name,
            model=self.model,
            request=vendor_request,
            turn=turn,
        )

        async def call() -> Any:
            return await self.adapter.execute_request(self.client, vendor_request)

        async def on_retry(exc: BaseException, attempt: int) -> None:
            logger.debug("%s request failed (attempt %d): %s", self.adapter.name, attempt, exc)
            await self.hooks.fire(
                "on_retryable_model_error",
                provider=self.adapter.name,
                model=self.model,
                error=exc,
                attempt=attempt,
            )

        try:
            if self.retry is None:
                return await call()
            return await retry_async(
                call,
                policy=self.retry,
                should_retry=lambda exc: self.adapter.classify_error(exc).should_retry,
                on_retry=on_retry,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            await self.hooks.fire(
                "on_unrecoverable_model_error",
                provider=self.adapter.name,
                model=self.model,
                error=exc,
            )
            raise

    async def _execute_tool(self, call: ToolCall) -> ToolResult:
        if self.toolkit is None:
            raise InternalError(f"Tool {call.name!r} requested without a toolkit")
        await self.hooks.fire(
            "before_each_tool", tool_name=call.name, arguments=call.arguments
        )
        try:
            value = await self.toolkit.call(name=call.name, arguments=call.arguments)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            await self.hooks.fire(
                "on_tool_error",
                tool_name=call.name,
                arguments=call.arguments,
                error=exc,
            )
            raise ToolExecutionError(
                f"Error executing function call {call.name}: {exc}",
                tool_name=call.name,
                call_id=call.call_id,
            ) from exc
        await self.hooks.fire(
            "after_each_tool",
            tool_name=call.name,
            arguments=call.arguments,
            result=value,
        )
        return ToolResult(call_id=call.call_id, output=serialize_tool_output(value))

    def _complete(self, outcome: LoopOutcome, response: Any, text: str | None) -> LoopOutcome:
        items = self.adapter.response_to_history_items(response)
        if not items and text:
            items = [Message(role="assistant", content=text)]
        self._record(outcome, *items)
        if self.output_schema is not None:
            outcome.content = extract_content(
                self.output_schema, structured_args=None, text=text
            )
        else:
            outcome.content = text
        outcome.status = OperateStatus.COMPLETED
        return outcome

    def _complete_structured(self, outcome: LoopOutcome, response: Any) -> LoopOutcome:
        if self.output_schema is None:
            raise InternalError("Structured output requested without a schema")
        arguments = self.adapter.extract_structured_output(response)
        if arguments is None:
            raise SchemaValidationError(
                "structured_output arguments are not a JSON object",
            )
        outcome.content = extract_content(
            self.output_schema, structured_args=arguments, text=None
        )
        self._record(outcome, Message(role="assistant", content=json.dumps(arguments)))
        outcome.status = OperateStatus.COMPLETED
        return outcome

    @staticmethod
    def _record(outcome: LoopOutcome, *items: HistoryItem) -> None:
        outcome.history.extend(items)
        outcome.output.extend(items)
