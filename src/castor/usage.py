"""Per-attempt token accounting."""

from __future__ import annotations

from castor.providers.models import UsageItem


class UsageAccumulator:
    """Sum per-turn usage into one item for a provider attempt."""

    def __init__(self, provider: str, model: str) -> None:
        self.provider = provider
        self.model = model
        self.turns = 0
        self._total = UsageItem(provider=provider, model=model)

    def add(self, item: UsageItem) -> None:
        self.turns += 1
        self._total = UsageItem(
            input=self._total.input + item.input,
            output=self._total.output + item.output,
            reasoning=self._total.reasoning + item.reasoning,
            total=self._total.total + item.total,
            provider=self.provider,
            model=self.model,
        )

    def total(self) -> UsageItem:
        return self._total
