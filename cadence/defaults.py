"""Defaults for run metadata when the caller does not supply them."""

from __future__ import annotations

from typing import Optional

DEFAULT_PROVIDER = "anthropic"
DEFAULT_MODEL = "claude-opus-4-5"
DEFAULT_CONTEXT_TOKENS = 200_000

_MODEL_CONTEXT_WINDOWS: dict[str, int] = {
    "claude-opus-4-5": 200_000,
    "claude-sonnet-4": 200_000,
    "claude-3-5-sonnet": 200_000,
    "claude-3-opus": 200_000,
    "gpt-4o": 128_000,
    "gpt-4-turbo": 128_000,
    "gemini-2.0-flash": 1_000_000,
    "gemini-1.5-pro": 2_000_000,
}


def lookup_context_tokens(model_id: Optional[str]) -> Optional[int]:
    """
    Return the context window for *model_id*, or None if unknown.

    Exact ids win; otherwise the first known id contained in *model_id*
    matches, so ``anthropic/claude-opus-4-5`` resolves like ``claude-opus-4-5``.
    """
    if not model_id:
        return None
    if model_id in _MODEL_CONTEXT_WINDOWS:
        return _MODEL_CONTEXT_WINDOWS[model_id]
    for key, value in _MODEL_CONTEXT_WINDOWS.items():
        if key in model_id:
            return value
    return None


def split_model_ref(model: str, provider: str) -> tuple[str, str]:
    """Split ``provider/model`` ids; bare ids keep the given provider."""
    provider = provider or DEFAULT_PROVIDER
    if "/" in model:
        provider_id, model_id = model.split("/", 1)
        return provider_id, model_id
    return provider, model
