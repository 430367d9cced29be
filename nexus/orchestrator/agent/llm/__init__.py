"""LLM provider adapters behind one vendor-neutral interface.

Usage:
    client = create_llm_client("anthropic", api_key)
    async for chunk in client.stream(messages, tools, LLMOptions(model=...)):
        ...
"""

from nexus.errors import UnsupportedProviderError
from nexus.orchestrator.agent.llm.anthropic_provider import AnthropicProvider
from nexus.orchestrator.agent.llm.google_provider import GoogleProvider
from nexus.orchestrator.agent.llm.openai_provider import OpenAIProvider
from nexus.orchestrator.agent.llm.types import (
    LLMClient,
    LLMMessage,
    LLMOptions,
    LLMResponse,
    StreamChunk,
    ToolCall,
    ToolDefinition,
    Usage,
)

_PROVIDERS = {
    "anthropic": AnthropicProvider,
    "openai": OpenAIProvider,
    "google": GoogleProvider,
}


def create_llm_client(provider: str, api_key: str) -> LLMClient:
    """Build the adapter for a provider name.

    Raises:
        UnsupportedProviderError: If no adapter exists for provider.
    """
    cls = _PROVIDERS.get(provider)
    if cls is None:
        raise UnsupportedProviderError(provider)
    return cls(api_key)


__all__ = [
    "AnthropicProvider",
    "GoogleProvider",
    "LLMClient",
    "LLMMessage",
    "LLMOptions",
    "LLMResponse",
    "OpenAIProvider",
    "StreamChunk",
    "ToolCall",
    "ToolDefinition",
    "Usage",
    "create_llm_client",
]
