"""Fallback orchestration across an ordered chain of providers."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from functools import partial
import logging
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from castor.usage import UsageAccumulator

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    from castor.config import FallbackCandidate
    from castor.providers.base import ProviderAdapter
    from castor.providers.models import UsageItem

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ProviderBinding:
    """An adapter with the client and model it runs against."""

    adapter: ProviderAdapter
    client: Any
    model: str

    @property
    def provider(self) -> str:
        return self.adapter.name


@dataclass
class FallbackOutcome(Generic[T]):
    """The successful attempt plus chain bookkeeping."""

    value: T
    binding: ProviderBinding
    attempts: int
    usage: list[UsageItem] = field(default_factory=list)

    @property
    def fallback_used(self) -> bool:
        return self.attempts > 1


class FallbackOrchestrator:
    """Try the primary, then each candidate in order, one at a time.

    Any exception moves on to the next candidate; cancellation does not.
    When every candidate fails, the last error is re-raised unchanged.
    """

    def __init__(
        self,
        primary: Callable[[], ProviderBinding],
        candidates: Sequence[FallbackCandidate],
        *,
        resolve: Callable[[FallbackCandidate], ProviderBinding],
    ) -> None:
        self.candidates = list(candidates)
        self._targets: list[Callable[[], ProviderBinding]] = [primary]
        self._targets.extend(partial(resolve, c) for c in self.candidates)

    def _describe(self, index: int) -> str:
        if index == 0:
            return "primary"
        candidate = self.candidates[index - 1]
        return f"{candidate.provider} ({candidate.model})"

    async def run(
        self,
        attempt: Callable[[ProviderBinding, UsageAccumulator], Awaitable[T]],
    ) -> FallbackOutcome[T]:
        usage: list[UsageItem] = []
        for index, target in enumerate(self._targets):
            attempts = index + 1
            accumulator: UsageAccumulator | None = None
            try:
                binding = target()
                accumulator = UsageAccumulator(binding.provider, binding.model)
                value = await attempt(binding, accumulator)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if accumulator is not None and accumulator.turns:
                    usage.append(accumulator.total())
                if attempts == len(self._targets):
                    raise
                logger.warning(
                    "Provider %s failed: %s; falling back to %s",
                    self._describe(index),
                    exc,
                    self._describe(attempts),
                )
                continue

            usage.append(accumulator.total())
            if attempts > 1:
                logger.info(
                    "Fallback succeeded with %s (%s) after %d attempt(s)",
                    binding.provider,
                    binding.model,
                    attempts,
                )
            return FallbackOutcome(
                value=value, binding=binding, attempts=attempts, usage=usage
            )

        raise RuntimeError("fallback chain is empty")  # pragma: no cover
