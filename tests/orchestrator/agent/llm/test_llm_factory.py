"""Tests for provider adapter selection."""

import pytest

from nexus.errors import UnsupportedProviderError
from nexus.orchestrator.agent.llm import (
    AnthropicProvider,
    GoogleProvider,
    OpenAIProvider,
    create_llm_client,
)


@pytest.mark.parametrize(
    "provider,cls",
    [
        ("anthropic", AnthropicProvider),
        ("openai", OpenAIProvider),
        ("google", GoogleProvider),
    ],
)
def test_factory_selects_adapter(provider, cls):
    assert isinstance(create_llm_client(provider, "sk-test-key"), cls)


def test_unknown_provider_rejected():
    with pytest.raises(UnsupportedProviderError) as exc_info:
        create_llm_client("mistral", "sk-test-key")
    assert exc_info.value.code == "E-1003"
