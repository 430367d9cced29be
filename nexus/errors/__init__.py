"""Error handling framework for the Nexus agent engine.

This package provides:
- Error code registry with E-XXXX format codes
- Typed domain exceptions carrying those codes

Error categories:
- E-1xxx: Credential errors
- E-2xxx: LLM provider errors
- E-3xxx: Tool errors
- E-4xxx: Turn and approval workflow errors
"""

from nexus.errors.domain import (
    AgentUnavailableError,
    ApprovalConflictError,
    ConflictError,
    CredentialDecryptionError,
    CredentialError,
    DomainError,
    NotFoundError,
    ProviderError,
    ToolExecutionError,
    ToolPermissionError,
    TurnInProgressError,
    UnknownToolError,
    UnsupportedProviderError,
    ValidationError,
)
from nexus.errors.registry import (
    ERROR_REGISTRY,
    ErrorCategory,
    ErrorCode,
    get_error,
    get_errors_by_category,
    render_message,
)

__all__ = [
    # Registry
    "ErrorCode",
    "ErrorCategory",
    "ERROR_REGISTRY",
    "get_error",
    "get_errors_by_category",
    "render_message",
    # Exceptions
    "DomainError",
    "NotFoundError",
    "ConflictError",
    "ValidationError",
    "CredentialError",
    "CredentialDecryptionError",
    "UnsupportedProviderError",
    "ProviderError",
    "UnknownToolError",
    "ToolPermissionError",
    "ToolExecutionError",
    "ApprovalConflictError",
    "TurnInProgressError",
    "AgentUnavailableError",
]
