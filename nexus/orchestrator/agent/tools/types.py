"""Tool, context and business-service types for the agent tool registry.

Tool handlers never touch the database directly: they reach CRM/ERP data
through the BusinessServices container injected by the host application,
always passing the calling organization's id.
"""

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from nexus.orchestrator.agent.llm.types import ToolDefinition

ToolHandler = Callable[["OrgContext", dict[str, Any]], Any | Awaitable[Any]]


@dataclass
class BusinessServices:
    """Host-provided CRM/ERP service objects.

    Each attribute is any object exposing the methods the tool catalogs call
    (sync or async). Missing services make the dependent tools fail with a
    tool error instead of crashing the turn.
    """

    contacts: Any = None
    companies: Any = None
    clients: Any = None
    inventory: Any = None
    orders: Any = None
    invoices: Any = None
    pricelists: Any = None
    erp_analytics: Any = None
    crm_analytics: Any = None

    def require(self, name: str) -> Any:
        service = getattr(self, name, None)
        if service is None:
            raise RuntimeError(f"{name} service is not configured")
        return service


@dataclass(frozen=True)
class OrgContext:
    """Tenant scope handed to every tool handler.

    Attributes:
        org_id: Organization all data access must be scoped to.
        services: Business services to delegate to.
        user_id: User who triggered the turn or approved the action.
        agent_id: Agent running the turn.
    """

    org_id: str
    services: BusinessServices = field(default_factory=BusinessServices)
    user_id: str | None = None
    agent_id: str | None = None


@dataclass(frozen=True)
class Tool:
    """A registered tool.

    Attributes:
        key: Stable storage-facing key (what AgentTool rows reference).
        name: Model-facing name.
        description: Model-facing description.
        parameters: JSON Schema for the arguments.
        handler: (OrgContext, args) -> result, sync or async.
        required_permission: Permission the agent must hold, if any.
        is_destructive: Whether execution needs human approval.
        emit_result: Whether arguments and result go out with
            tool-execution events (analytics dashboards render them).
    """

    key: str
    name: str
    description: str
    parameters: dict[str, Any]
    handler: ToolHandler
    required_permission: str | None = None
    is_destructive: bool = False
    emit_result: bool = False

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name, description=self.description, parameters=self.parameters
        )


async def call_service(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Call a business-service method that may be sync or async."""
    result = fn(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result


def pick(args: dict[str, Any], **mapping: str) -> dict[str, Any]:
    """Map model argument names to service kwargs, dropping absent ones.

    Example:
        pick({"clientId": "c1"}, client_id="clientId", page="page")
        -> {"client_id": "c1"}
    """
    return {
        kwarg: args[arg]
        for kwarg, arg in mapping.items()
        if args.get(arg) is not None
    }
