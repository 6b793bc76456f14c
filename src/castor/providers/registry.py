"""Adapter registry keyed by provider name."""

from __future__ import annotations

from typing import TYPE_CHECKING

from castor.constants import ANTHROPIC, GEMINI, MOCK, OPENAI, OPENROUTER
from castor.errors import ConfigurationError
from castor.providers.anthropic import AnthropicAdapter
from castor.providers.gemini import GeminiAdapter
from castor.providers.mock import MockAdapter
from castor.providers.openai import OpenAIAdapter
from castor.providers.openrouter import OpenRouterAdapter

if TYPE_CHECKING:
    from castor.providers.base import ProviderAdapter

_ADAPTERS: dict[str, type[ProviderAdapter]] = {
    OPENAI: OpenAIAdapter,
    ANTHROPIC: AnthropicAdapter,
    GEMINI: GeminiAdapter,
    OPENROUTER: OpenRouterAdapter,
    MOCK: MockAdapter,
}


def get_adapter(provider: str) -> ProviderAdapter:
    """Return a fresh adapter instance for *provider*."""
    adapter_cls = _ADAPTERS.get(provider)
    if adapter_cls is None:
        supported = ", ".join(repr(name) for name in _ADAPTERS if name != MOCK)
        raise ConfigurationError(
            f"Unknown provider: {provider!r}",
            hint=f"Supported providers: {supported}",
        )
    return adapter_cls()
