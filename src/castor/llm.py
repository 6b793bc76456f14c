"""``Llm``: one configured provider plus its fallback chain."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from castor.config import Config, FallbackCandidate
from castor.constants import MOCK
from castor.fallback import FallbackOrchestrator, ProviderBinding
from castor.history import process_input
from castor.hooks import HookRunner
from castor.loop import LoopOutcome, ToolExecutionLoop
from castor.options import Options
from castor.providers.registry import get_adapter
from castor.result import OperateResult
from castor.structured import OutputSchema

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from castor.history import HistoryItem
    from castor.providers.base import ProviderAdapter
    from castor.usage import UsageAccumulator

logger = logging.getLogger(__name__)


class Llm:
    """A provider adapter bound to a client, with optional fallbacks.

    The adapter is chosen once from ``config.provider``. Clients are created
    lazily on first use and reused across calls; fallback clients are cached
    per provider, model and key.

    Example:
        async with Llm(Config(provider="anthropic")) as llm:
            result = await llm.operate("Hello", Options(turns=True))
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        adapter: ProviderAdapter | None = None,
        client: Any = None,
    ) -> None:
        self.config = config or Config()
        self.adapter = adapter or get_adapter(
            MOCK if self.config.use_mock else str(self.config.provider)
        )
        self._client = client
        self._fallback_bindings: dict[tuple[str, str, str | None], ProviderBinding] = {}

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = self.adapter.create_client(self.config.api_key)
        return self._client

    async def operate(
        self,
        input: str | HistoryItem | Sequence[HistoryItem | Mapping[str, Any]],  # noqa: A002
        options: Options | None = None,
    ) -> OperateResult:
        """Run one call through the tool loop, falling back on failure.

        Raises the last provider's error when the whole chain fails.
        """
        options = options or Options()
        placeholders = options.placeholders
        processed = process_input(
            input,
            data=dict(options.data) if options.data else None,
            history=options.history,
            instructions=options.instructions,
            system=options.system,
            substitute_input=placeholders.input,
            substitute_instructions=placeholders.instructions,
            substitute_system=placeholders.system,
        )
        toolkit = options.toolkit()
        output_schema = (
            OutputSchema.from_format(options.format) if options.format is not None else None
        )
        hooks = HookRunner(options.hooks)
        max_turns = options.max_turns()

        model = options.model or str(self.config.model)

        def primary() -> ProviderBinding:
            return ProviderBinding(self.adapter, self.client, model)

        async def attempt(binding: ProviderBinding, usage: UsageAccumulator) -> LoopOutcome:
            loop = ToolExecutionLoop(
                binding.adapter,
                binding.client,
                model=binding.model,
                toolkit=toolkit,
                output_schema=output_schema,
                hooks=hooks,
                max_turns=max_turns,
                retry=self.config.retry,
                provider_options=dict(options.provider_options),
            )
            return await loop.run(processed, usage)

        orchestrator = FallbackOrchestrator(
            primary,
            options.fallback_candidates(self.config.fallback),
            resolve=self._fallback_binding,
        )
        outcome = await orchestrator.run(attempt)
        loop_outcome = outcome.value
        return OperateResult(
            content=loop_outcome.content,
            history=loop_outcome.history,
            usage=outcome.usage,
            status=loop_outcome.status,
            provider=outcome.binding.provider,
            model=outcome.binding.model,
            fallback_used=outcome.fallback_used,
            fallback_attempts=outcome.attempts,
            responses=loop_outcome.responses,
            output=loop_outcome.output,
            error=loop_outcome.error,
            reasoning=loop_outcome.reasoning,
        )

    def _fallback_binding(self, candidate: FallbackCandidate) -> ProviderBinding:
        key = (candidate.provider, str(candidate.model), candidate.api_key)
        binding = self._fallback_bindings.get(key)
        if binding is None:
            adapter = get_adapter(candidate.provider)
            client = adapter.create_client(candidate.resolve_api_key())
            binding = ProviderBinding(adapter, client, str(candidate.model))
            self._fallback_bindings[key] = binding
        return binding

    async def aclose(self) -> None:
        """Close every client this instance created."""
        bindings = list(self._fallback_bindings.values())
        self._fallback_bindings.clear()
        targets: list[tuple[ProviderAdapter, Any]] = [(b.adapter, b.client) for b in bindings]
        if self._client is not None:
            targets.insert(0, (self.adapter, self._client))
            self._client = None
        for adapter, client in targets:
            try:
                await adapter.close_client(client)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                # Cleanup should never mask the primary failure.
                logger.warning("Client cleanup failed for %s: %s", adapter.name, exc)

    async def __aenter__(self) -> Llm:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
