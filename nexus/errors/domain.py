"""Typed domain exceptions for the agent engine.

These exceptions give the hosting web layer a stable contract: each carries
an E-XXXX code from the registry, and callers catch specific types to pick
an HTTP status or to turn the failure into a conversational message.

Usage:
    # In service layer
    raise NotFoundError("ActionLog", action_id)

    # In route handler
    try:
        await handler.approve(ctx, action_id)
    except ApprovalConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
"""

from nexus.errors.registry import render_message


class DomainError(Exception):
    """Base exception for all domain errors."""

    code: str | None = None

    def __init__(self, message: str) -> None:
        super().__init__(message)


class NotFoundError(DomainError):
    """Resource was not found. Maps to HTTP 404."""

    def __init__(self, resource_type: str, identifier: str) -> None:
        super().__init__(f"{resource_type} '{identifier}' not found")
        self.resource_type = resource_type
        self.identifier = identifier


class ConflictError(DomainError):
    """Resource conflict (e.g., already resolved). Maps to HTTP 409."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ValidationError(DomainError):
    """Validation failure. Maps to HTTP 400."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


# Credential errors


class CredentialError(DomainError):
    """Provider key missing or unusable. Raised before any model call."""

    code = "E-1001"

    def __init__(self, provider: str, message: str | None = None) -> None:
        super().__init__(message or render_message(self.code, provider=provider))
        self.provider = provider


class CredentialDecryptionError(CredentialError):
    """Ciphertext could not be authenticated or decoded. Never partial."""

    code = "E-1002"

    def __init__(self, reason: str, provider: str = "") -> None:
        super().__init__(provider, render_message(self.code, reason=reason))
        self.reason = reason


class UnsupportedProviderError(ValidationError):
    """Agent configured with a provider that has no adapter."""

    code = "E-1003"

    def __init__(self, provider: str) -> None:
        super().__init__(render_message(self.code, provider=provider))
        self.provider = provider


# Provider errors


class ProviderError(DomainError):
    """Vendor HTTP or stream failure. Adapters never retry."""

    code = "E-2001"

    def __init__(
        self,
        provider: str,
        reason: str,
        status_code: int | None = None,
    ) -> None:
        status = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(
            render_message(self.code, provider=provider, status=status, reason=reason)
        )
        self.provider = provider
        self.reason = reason
        self.status_code = status_code


# Tool errors


class UnknownToolError(DomainError):
    """Tool name or key not in the registry, or not bound to the agent."""

    code = "E-3001"

    def __init__(self, name: str) -> None:
        super().__init__(render_message(self.code, name=name))
        self.name = name


class ToolPermissionError(DomainError):
    """Agent does not hold the permission a tool requires."""

    code = "E-3002"

    def __init__(self, name: str, permission: str) -> None:
        super().__init__(render_message(self.code, name=name, permission=permission))
        self.name = name
        self.permission = permission


class ToolExecutionError(DomainError):
    """A tool handler raised."""

    code = "E-3003"

    def __init__(self, name: str, reason: str) -> None:
        super().__init__(render_message(self.code, name=name, reason=reason))
        self.name = name
        self.reason = reason


# Workflow errors


class ApprovalConflictError(ConflictError):
    """approve/reject called on an action that is not pending approval."""

    code = "E-4001"

    def __init__(self, action_id: str, status: str) -> None:
        super().__init__(render_message(self.code, action_id=action_id, status=status))
        self.action_id = action_id
        self.status = status


class TurnInProgressError(ConflictError):
    """Another turn holds the conversation and the caller asked not to wait."""

    code = "E-4002"

    def __init__(self, conversation_id: str) -> None:
        super().__init__(render_message(self.code, conversation_id=conversation_id))
        self.conversation_id = conversation_id


class AgentUnavailableError(ConflictError):
    """Agent is paused or disabled."""

    code = "E-4003"

    def __init__(self, agent_id: str, status: str) -> None:
        super().__init__(render_message(self.code, agent_id=agent_id, status=status))
        self.agent_id = agent_id
        self.status = status
