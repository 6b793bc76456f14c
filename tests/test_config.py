"""Configuration, provider resolution and per-call options."""

from __future__ import annotations

import pytest

from castor.config import (
    Config,
    FallbackCandidate,
    determine_provider,
    resolve_provider,
)
from castor.errors import ConfigurationError
from castor.hooks import Hooks
from castor.options import Options
from castor.toolkit import Tool, Toolkit

pytestmark = pytest.mark.unit


# =============================================================================
# Provider resolution
# =============================================================================


@pytest.mark.parametrize(
    ("model", "provider"),
    [
        ("gpt-5-mini", "openai"),
        ("o3", "openai"),
        ("o4-mini-deep-research", "openai"),
        ("claude-sonnet-4-5", "anthropic"),
        ("claude-3-opus-20240229", "anthropic"),
        ("gemini-2.5-pro", "gemini"),
        ("gemma-3-27b-it", "gemini"),
        ("anthropic/claude-sonnet-4.5", "openrouter"),
        ("meta-llama/llama-3.3-70b-instruct", "openrouter"),
        ("models/gemini-2.5-flash", "gemini"),
    ],
)
def test_determine_provider_from_model_name(model: str, provider: str) -> None:
    assert determine_provider(model) == provider


def test_determine_provider_returns_none_for_unknown_models() -> None:
    assert determine_provider("mistral-large") is None


def test_resolve_provider_defaults_and_aliases() -> None:
    assert resolve_provider(None, None) == ("openai", "gpt-5-mini")
    assert resolve_provider("google", None) == ("gemini", "gemini-2.5-flash")
    assert resolve_provider(None, "claude") == ("anthropic", "claude-sonnet-4-5")
    assert resolve_provider(None, "mistral-large") == ("openai", "mistral-large")


def test_unknown_provider_is_rejected_with_hint() -> None:
    with pytest.raises(ConfigurationError) as exc_info:
        resolve_provider("cohere", None)

    assert "openai" in (exc_info.value.hint or "")


# =============================================================================
# Config
# =============================================================================


def test_config_reads_api_key_from_environment(monkeypatch) -> None:
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test")

    config = Config(model="claude-haiku-4-5")

    assert config.provider == "anthropic"
    assert config.api_key == "sk-ant-test"


def test_gemini_accepts_google_api_key(monkeypatch) -> None:
    monkeypatch.setenv("GOOGLE_API_KEY", "g-test")

    assert Config(provider="gemini").api_key == "g-test"


def test_missing_api_key_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError) as exc_info:
        Config(provider="openai")

    assert "OPENAI_API_KEY" in (exc_info.value.hint or "")


def test_mock_needs_no_key() -> None:
    assert Config(use_mock=True).model == "mock-model"
    assert Config(provider="mock").use_mock is True


def test_config_repr_redacts_api_key() -> None:
    config = Config(provider="openai", api_key="sk-secret")

    assert "sk-secret" not in repr(config)
    assert "[REDACTED]" in str(config)


def test_fallback_entries_are_coerced() -> None:
    config = Config(
        use_mock=True,
        fallback=[
            "claude-haiku-4-5",
            {"provider": "gemini"},
            FallbackCandidate("openrouter", "openai/gpt-5-mini"),
        ],
    )

    assert [(c.provider, c.model) for c in config.fallback] == [
        ("anthropic", "claude-haiku-4-5"),
        ("gemini", "gemini-2.5-flash"),
        ("openrouter", "openai/gpt-5-mini"),
    ]


def test_fallback_candidate_key_resolution(monkeypatch) -> None:
    candidate = FallbackCandidate("anthropic")

    with pytest.raises(ConfigurationError):
        candidate.resolve_api_key()

    monkeypatch.setenv("ANTHROPIC_API_KEY", "from-env")
    assert candidate.resolve_api_key() == "from-env"
    assert FallbackCandidate("anthropic", api_key="explicit").resolve_api_key() == "explicit"
    assert "explicit" not in repr(FallbackCandidate("anthropic", api_key="explicit"))


def test_invalid_fallback_entry_is_rejected() -> None:
    with pytest.raises(ConfigurationError):
        FallbackCandidate.coerce(42)  # type: ignore[arg-type]


# =============================================================================
# Options
# =============================================================================


@pytest.mark.parametrize(
    ("turns", "expected"),
    [(None, 1), (False, 1), (True, 12), (5, 5), (0, 1), (500, 72)],
)
def test_turns_resolve_to_clamped_budget(turns, expected) -> None:
    assert Options(turns=turns).max_turns() == expected


def test_hooks_mapping_is_converted() -> None:
    options = Options(hooks={"before_each_tool": lambda **_: None})

    assert isinstance(options.hooks, Hooks)


def test_unknown_hook_name_is_rejected() -> None:
    with pytest.raises(ConfigurationError, match="Unknown hooks"):
        Options(hooks={"before_everything": lambda **_: None})


def test_fallback_true_is_rejected() -> None:
    with pytest.raises(ConfigurationError):
        Options(fallback=True)  # type: ignore[arg-type]


def test_option_types_are_validated() -> None:
    with pytest.raises(ConfigurationError):
        Options(system=3)  # type: ignore[arg-type]
    with pytest.raises(ConfigurationError):
        Options(turns="many")  # type: ignore[arg-type]
    with pytest.raises(ConfigurationError):
        Options(data=["not", "a", "mapping"])  # type: ignore[arg-type]


def test_toolkit_accepts_tools_dicts_or_toolkit() -> None:
    tool = Tool("ping", "Ping", lambda: "pong")

    assert Options().toolkit() is None
    assert Options(tools=[]).toolkit() is None
    assert "ping" in Options(tools=[tool]).toolkit()
    assert "ping" in Options(
        tools=[{"name": "ping", "description": "Ping", "call": lambda: "pong"}]
    ).toolkit()
    existing = Toolkit([tool])
    assert Options(tools=existing).toolkit() is existing


def test_fallback_candidates_per_call() -> None:
    configured = (FallbackCandidate("anthropic"),)

    assert Options().fallback_candidates(configured) == list(configured)
    assert Options(fallback=False).fallback_candidates(configured) == []
    assert [c.provider for c in Options(fallback=["gemini"]).fallback_candidates(configured)] == [
        "gemini"
    ]
