"""Project-wide constants for castor."""

from __future__ import annotations

import re

# ==============================================================================
# Providers
# ==============================================================================

OPENAI = "openai"
ANTHROPIC = "anthropic"
GEMINI = "gemini"
OPENROUTER = "openrouter"
MOCK = "mock"

PROVIDER_NAMES: tuple[str, ...] = (OPENAI, ANTHROPIC, GEMINI, OPENROUTER)
DEFAULT_PROVIDER = OPENAI

DEFAULT_MODELS: dict[str, str] = {
    OPENAI: "gpt-5-mini",
    ANTHROPIC: "claude-sonnet-4-5",
    GEMINI: "gemini-2.5-flash",
    OPENROUTER: "openai/gpt-5-mini",
    MOCK: "mock-model",
}

# Exact model names recognised without a provider hint.
KNOWN_MODELS: dict[str, tuple[str, ...]] = {
    OPENAI: ("gpt-5", "gpt-5-mini", "gpt-5-nano", "gpt-4.1", "gpt-4o", "o3", "o4-mini"),
    ANTHROPIC: (
        "claude-opus-4-1",
        "claude-sonnet-4-5",
        "claude-haiku-4-5",
        "claude-3-5-haiku-latest",
    ),
    GEMINI: ("gemini-2.5-pro", "gemini-2.5-flash", "gemini-2.5-flash-lite"),
    OPENROUTER: ("openai/gpt-5-mini", "anthropic/claude-sonnet-4.5"),
}

# Substring matches, checked in this provider order after exact names.
MODEL_MATCH_WORDS: dict[str, tuple[str, ...]] = {
    ANTHROPIC: ("claude", "sonnet", "opus", "haiku"),
    GEMINI: ("gemini", "gemma"),
    OPENAI: ("gpt", "davinci", "chatgpt"),
    OPENROUTER: ("openrouter",),
}
OPENAI_MODEL_PATTERN = re.compile(r"^o\d(?:-|$)")

PROVIDER_ALIASES: dict[str, str] = {
    "google": GEMINI,
    "claude": ANTHROPIC,
    "chatgpt": OPENAI,
}

API_KEY_ENV_VARS: dict[str, tuple[str, ...]] = {
    OPENAI: ("OPENAI_API_KEY",),
    ANTHROPIC: ("ANTHROPIC_API_KEY",),
    GEMINI: ("GEMINI_API_KEY", "GOOGLE_API_KEY"),
    OPENROUTER: ("OPENROUTER_API_KEY",),
}

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

# ==============================================================================
# Tool loop
# ==============================================================================

DEFAULT_MAX_TURNS = 1
ENABLED_MAX_TURNS = 12  # used when ``turns=True``
MAX_TURNS_LIMIT = 72

STRUCTURED_OUTPUT_TOOL_NAME = "structured_output"
STRUCTURED_OUTPUT_DESCRIPTION = (
    "Output a structured JSON object, "
    "use this before your final response to give structured outputs to the user"
)
EXPLANATION_ARGUMENT = "__Explanation"

RATE_LIMIT_DELAY_MS = 60_000
