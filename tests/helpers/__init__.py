"""Test helper utilities for engine and approval tests."""

from tests.helpers.fakes import (
    FakeAnalyticsService,
    FakeOrderService,
    RecordingEmitter,
    ScriptedLLMClient,
    provider_failure,
    text_response,
    tool_response,
)

__all__ = [
    "FakeAnalyticsService",
    "FakeOrderService",
    "RecordingEmitter",
    "ScriptedLLMClient",
    "provider_failure",
    "text_response",
    "tool_response",
]
