"""Configuration: frozen Config with provider resolution and env API keys."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
import os
from typing import Any

from dotenv import load_dotenv

from castor.constants import (
    API_KEY_ENV_VARS,
    DEFAULT_MODELS,
    DEFAULT_PROVIDER,
    KNOWN_MODELS,
    MOCK,
    MODEL_MATCH_WORDS,
    OPENAI,
    OPENAI_MODEL_PATTERN,
    OPENROUTER,
    PROVIDER_ALIASES,
    PROVIDER_NAMES,
)
from castor.errors import ConfigurationError
from castor.retry import RetryPolicy

load_dotenv()


def normalize_provider(name: str) -> str | None:
    """Return the canonical provider name, or None when unrecognised."""
    lowered = name.strip().lower()
    lowered = PROVIDER_ALIASES.get(lowered, lowered)
    if lowered in PROVIDER_NAMES or lowered == MOCK:
        return lowered
    return None


def determine_provider(model: str) -> str | None:
    """Guess the provider for a model name.

    Exact known names are checked first, then vendor-prefixed slugs, then
    match words. OpenAI's ``o<N>`` reasoning models are matched by pattern.
    """
    for provider, models in KNOWN_MODELS.items():
        if model in models:
            return provider
    lowered = model.lower()
    if "/" in lowered and not lowered.startswith("models/"):
        # Vendor-prefixed slugs such as "anthropic/claude-sonnet-4.5".
        return OPENROUTER
    for provider, words in MODEL_MATCH_WORDS.items():
        if provider == OPENAI and OPENAI_MODEL_PATTERN.match(lowered):
            return OPENAI
        if any(word in lowered for word in words):
            return provider
    return None


def resolve_provider(provider: str | None, model: str | None) -> tuple[str, str]:
    """Resolve a ``(provider, model)`` pair from partial input.

    A provider name passed as *model* selects that provider's default model.
    """
    if provider:
        resolved = normalize_provider(provider)
        if resolved is None:
            supported = ", ".join(repr(p) for p in PROVIDER_NAMES)
            raise ConfigurationError(
                f"Unknown provider: {provider!r}",
                hint=f"Supported providers: {supported}",
            )
        return resolved, model or DEFAULT_MODELS[resolved]

    if model:
        as_provider = normalize_provider(model)
        if as_provider is not None:
            return as_provider, DEFAULT_MODELS[as_provider]
        return determine_provider(model) or DEFAULT_PROVIDER, model

    return DEFAULT_PROVIDER, DEFAULT_MODELS[DEFAULT_PROVIDER]


def api_key_from_env(provider: str) -> str | None:
    for env_var in API_KEY_ENV_VARS.get(provider, ()):
        value = os.environ.get(env_var)
        if value:
            return value
    return None


def _missing_key_error(provider: str) -> ConfigurationError:
    env_var = " or ".join(API_KEY_ENV_VARS.get(provider, ("an API key",)))
    return ConfigurationError(
        f"API key required for {provider}",
        hint=f"Set {env_var} environment variable or pass api_key=...",
    )


@dataclass(frozen=True)
class FallbackCandidate:
    """One provider/model pair in a fallback chain."""

    provider: str
    model: str | None = None
    api_key: str | None = None

    def __post_init__(self) -> None:
        provider, model = resolve_provider(self.provider, self.model)
        object.__setattr__(self, "provider", provider)
        object.__setattr__(self, "model", model)

    @classmethod
    def coerce(cls, value: FallbackCandidate | Mapping[str, Any] | str) -> FallbackCandidate:
        """Build a candidate from a candidate, a dict, or a provider/model string."""
        if isinstance(value, FallbackCandidate):
            return value
        if isinstance(value, str):
            provider, model = resolve_provider(None, value)
            return cls(provider=provider, model=model)
        if isinstance(value, Mapping):
            provider = value.get("provider")
            model = value.get("model")
            if not provider:
                provider, model = resolve_provider(None, model)
            return cls(provider=provider, model=model, api_key=value.get("api_key"))
        raise ConfigurationError(
            f"Invalid fallback entry: {value!r}",
            hint="Use FallbackCandidate(provider, model) or {'provider': ..., 'model': ...}.",
        )

    def resolve_api_key(self) -> str | None:
        """Return the explicit key or the provider's env var, failing when absent."""
        if self.provider == MOCK:
            return None
        key = self.api_key or api_key_from_env(self.provider)
        if not key:
            raise _missing_key_error(self.provider)
        return key

    def __repr__(self) -> str:
        return (
            f"FallbackCandidate(provider={self.provider!r}, model={self.model!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None})"
        )


@dataclass(frozen=True)
class Config:
    """Immutable configuration for an ``Llm``.

    The provider may be omitted when the model name identifies it. API keys
    are auto-resolved from the standard environment variables.

    Example:
        config = Config(provider="anthropic", fallback=[FallbackCandidate("openai")])
        # API key is automatically resolved from ANTHROPIC_API_KEY
    """

    provider: str | None = None
    model: str | None = None
    #: Auto-resolved from the provider's ``*_API_KEY`` variable when *None*.
    api_key: str | None = None
    #: Tried in order after the primary fails.
    fallback: tuple[FallbackCandidate, ...] = ()
    use_mock: bool = False
    #: In-turn retry for transient vendor errors; *None* means one call per turn.
    retry: RetryPolicy | None = None

    def __post_init__(self) -> None:
        """Resolve provider, model and API key, and validate."""
        if isinstance(self.provider, str) and self.provider.strip().lower() == MOCK:
            object.__setattr__(self, "use_mock", True)
        if self.use_mock:
            object.__setattr__(self, "provider", MOCK)
            object.__setattr__(self, "model", self.model or DEFAULT_MODELS[MOCK])
        else:
            provider, model = resolve_provider(self.provider, self.model)
            object.__setattr__(self, "provider", provider)
            object.__setattr__(self, "model", model)

        object.__setattr__(
            self,
            "fallback",
            tuple(FallbackCandidate.coerce(c) for c in self.fallback or ()),
        )

        if self.use_mock:
            return
        if self.api_key is None:
            object.__setattr__(self, "api_key", api_key_from_env(self.provider))
        if not self.api_key:
            raise _missing_key_error(self.provider)

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(provider={self.provider!r}, model={self.model!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, "
            f"fallback={list(self.fallback)!r}, use_mock={self.use_mock})"
        )

    __repr__ = __str__
