"""Model-provider adapters."""

from cadence.api.claude import AnthropicSessionProvider, ProviderInitError

__all__ = ["AnthropicSessionProvider", "ProviderInitError"]
