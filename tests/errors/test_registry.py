"""Unit tests for nexus/errors/registry.py and the domain exceptions.

Tests verify:
- Every domain exception's code is registered in the right category
- Messages are rendered from the registry templates
"""

import pytest

from nexus.errors import (
    AgentUnavailableError,
    ApprovalConflictError,
    ConflictError,
    CredentialDecryptionError,
    CredentialError,
    ErrorCategory,
    ProviderError,
    ToolExecutionError,
    ToolPermissionError,
    TurnInProgressError,
    UnknownToolError,
    UnsupportedProviderError,
    ValidationError,
    get_error,
    get_errors_by_category,
    render_message,
)


@pytest.mark.parametrize(
    "code,category,title",
    [
        ("E-1001", ErrorCategory.CREDENTIAL, "Missing Provider Key"),
        ("E-1002", ErrorCategory.CREDENTIAL, "Provider Key Unreadable"),
        ("E-1003", ErrorCategory.CREDENTIAL, "Unsupported Provider"),
        ("E-2001", ErrorCategory.PROVIDER, "Provider Request Failed"),
        ("E-3001", ErrorCategory.TOOL, "Unknown Tool"),
        ("E-3002", ErrorCategory.TOOL, "Tool Permission Denied"),
        ("E-3003", ErrorCategory.TOOL, "Tool Execution Failed"),
        ("E-4001", ErrorCategory.WORKFLOW, "Action Already Resolved"),
        ("E-4002", ErrorCategory.WORKFLOW, "Turn In Progress"),
        ("E-4003", ErrorCategory.WORKFLOW, "Agent Unavailable"),
    ],
)
def test_error_codes_registered(code, category, title):
    """All engine error codes must be registered."""
    error = get_error(code)
    assert error is not None, f"{code} not found in registry"
    assert error.category == category
    assert error.title == title


def test_unknown_code_returns_none():
    assert get_error("E-9999") is None


def test_errors_by_category():
    codes = {e.code for e in get_errors_by_category(ErrorCategory.TOOL)}
    assert codes == {"E-3001", "E-3002", "E-3003"}


def test_provider_errors_are_retryable():
    assert get_error("E-2001").is_retryable is True
    assert get_error("E-3001").is_retryable is False


class TestRenderMessage:
    def test_fills_template(self):
        assert render_message("E-3001", name="frobnicate") == "Unknown tool: frobnicate"

    def test_missing_context_keeps_template(self):
        assert render_message("E-3001") == "Unknown tool: {name}"

    def test_unknown_code(self):
        assert render_message("E-0000") == "Unknown error: E-0000"


class TestDomainExceptions:
    def test_credential_error_carries_provider(self):
        err = CredentialError("openai")
        assert err.code == "E-1001"
        assert err.provider == "openai"
        assert "openai" in str(err)

    def test_decryption_error_is_credential_error(self):
        err = CredentialDecryptionError("auth tag mismatch", provider="google")
        assert isinstance(err, CredentialError)
        assert err.code == "E-1002"
        assert err.reason == "auth tag mismatch"
        assert err.provider == "google"

    def test_unsupported_provider_is_validation_error(self):
        err = UnsupportedProviderError("mistral")
        assert isinstance(err, ValidationError)
        assert str(err) == "Unsupported LLM provider: mistral"

    def test_provider_error_formats_status(self):
        err = ProviderError("anthropic", "overloaded", status_code=529)
        assert str(err) == "anthropic request failed (HTTP 529): overloaded"
        assert err.reason == "overloaded"
        assert err.status_code == 529

    def test_provider_error_without_status(self):
        assert str(ProviderError("google", "timeout")) == "google request failed: timeout"

    def test_tool_errors(self):
        assert UnknownToolError("x").code == "E-3001"
        perm = ToolPermissionError("create_order", "erp:orders:create")
        assert "erp:orders:create" in str(perm)
        exec_err = ToolExecutionError("get_order", "boom")
        assert exec_err.reason == "boom"

    @pytest.mark.parametrize(
        "err",
        [
            ApprovalConflictError("a1", "success"),
            TurnInProgressError("c1"),
            AgentUnavailableError("ag1", "paused"),
        ],
    )
    def test_workflow_errors_are_conflicts(self, err):
        assert isinstance(err, ConflictError)
        assert err.code.startswith("E-4")
