"""Error code registry with E-XXXX format codes.

This module defines the error code system for the agent engine, organizing
errors into categories:
- E-1xxx: Credential errors
- E-2xxx: LLM provider errors
- E-3xxx: Tool errors
- E-4xxx: Turn and approval workflow errors

Each error includes a code, title, message template, and remediation steps.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories for error codes."""

    CREDENTIAL = "credential"  # E-1xxx: Credential errors
    PROVIDER = "provider"  # E-2xxx: LLM provider errors
    TOOL = "tool"  # E-3xxx: Tool errors
    WORKFLOW = "workflow"  # E-4xxx: Turn and approval workflow errors


@dataclass
class ErrorCode:
    """Definition of an error code with metadata.

    Attributes:
        code: Error code in E-XXXX format.
        category: Error category for grouping.
        title: Short title for display.
        message_template: Message with {placeholders} for context.
        remediation: Action the user or admin should take to resolve.
        is_retryable: Whether the operation can be retried without user action.
    """

    code: str  # E-XXXX format
    category: ErrorCategory
    title: str  # Short title for display
    message_template: str  # Message with {placeholders}
    remediation: str  # Action user should take
    is_retryable: bool = False  # Can be retried without user action


# Error registry - all defined error codes
ERROR_REGISTRY: dict[str, ErrorCode] = {
    # Credential errors (E-1xxx)
    "E-1001": ErrorCode(
        code="E-1001",
        category=ErrorCategory.CREDENTIAL,
        title="Missing Provider Key",
        message_template="No active API key is configured for provider '{provider}'.",
        remediation="Ask an admin to add a provider key in Settings.",
    ),
    "E-1002": ErrorCode(
        code="E-1002",
        category=ErrorCategory.CREDENTIAL,
        title="Provider Key Unreadable",
        message_template="The stored API key could not be decrypted: {reason}",
        remediation="Check the platform encryption key, or re-enter the provider key in Settings.",
    ),
    "E-1003": ErrorCode(
        code="E-1003",
        category=ErrorCategory.CREDENTIAL,
        title="Unsupported Provider",
        message_template="Unsupported LLM provider: {provider}",
        remediation="Configure the agent with anthropic, openai, or google.",
    ),
    # Provider errors (E-2xxx)
    "E-2001": ErrorCode(
        code="E-2001",
        category=ErrorCategory.PROVIDER,
        title="Provider Request Failed",
        message_template="{provider} request failed{status}: {reason}",
        remediation="Try again. If the problem persists, check the provider status page and the configured key.",
        is_retryable=True,
    ),
    # Tool errors (E-3xxx)
    "E-3001": ErrorCode(
        code="E-3001",
        category=ErrorCategory.TOOL,
        title="Unknown Tool",
        message_template="Unknown tool: {name}",
        remediation="Use one of the tools listed in the tool definitions.",
    ),
    "E-3002": ErrorCode(
        code="E-3002",
        category=ErrorCategory.TOOL,
        title="Tool Permission Denied",
        message_template="Agent lacks permission '{permission}' required by tool {name}.",
        remediation="Grant the permission to the agent, or ask a user to perform the action.",
    ),
    "E-3003": ErrorCode(
        code="E-3003",
        category=ErrorCategory.TOOL,
        title="Tool Execution Failed",
        message_template="Tool {name} failed: {reason}",
        remediation="Check the tool arguments and retry.",
    ),
    # Workflow errors (E-4xxx)
    "E-4001": ErrorCode(
        code="E-4001",
        category=ErrorCategory.WORKFLOW,
        title="Action Already Resolved",
        message_template="Action {action_id} is not pending approval (status: {status}).",
        remediation="Refresh the conversation; the action was already approved or rejected.",
    ),
    "E-4002": ErrorCode(
        code="E-4002",
        category=ErrorCategory.WORKFLOW,
        title="Turn In Progress",
        message_template="The agent is still responding in conversation {conversation_id}.",
        remediation="Wait for the current response to finish and send the message again.",
        is_retryable=True,
    ),
    "E-4003": ErrorCode(
        code="E-4003",
        category=ErrorCategory.WORKFLOW,
        title="Agent Unavailable",
        message_template="Agent {agent_id} is {status} and cannot respond.",
        remediation="Activate the agent in the agent settings.",
    ),
}


def get_error(code: str) -> ErrorCode | None:
    """Get error definition by code.

    Args:
        code: Error code in E-XXXX format.

    Returns:
        ErrorCode if found, None otherwise.
    """
    return ERROR_REGISTRY.get(code)


def get_errors_by_category(category: ErrorCategory) -> list[ErrorCode]:
    """Get all errors in a category.

    Args:
        category: The error category to filter by.

    Returns:
        List of ErrorCode objects in the specified category.
    """
    return [e for e in ERROR_REGISTRY.values() if e.category == category]


def render_message(code: str, **context: object) -> str:
    """Format a registry message template, keeping it raw if context is missing."""
    error_def = get_error(code)
    if error_def is None:
        return f"Unknown error: {code}"
    try:
        return error_def.message_template.format(**context)
    except KeyError:
        return error_def.message_template
