"""Agent tool registration: canonical entrypoint.

Assembles the CRM, ERP and analytics catalogs into a frozen ToolRegistry.
The registry is built explicitly and handed to the engine, never looked up
from module state.
"""

from nexus.orchestrator.agent.tools.analytics import ANALYTICS_TOOLS
from nexus.orchestrator.agent.tools.crm import CRM_TOOLS
from nexus.orchestrator.agent.tools.erp import ERP_TOOLS
from nexus.orchestrator.agent.tools.registry import ToolRegistry
from nexus.orchestrator.agent.tools.types import BusinessServices, OrgContext, Tool


def build_default_registry() -> ToolRegistry:
    """Return a frozen registry with every built-in tool."""
    return ToolRegistry([*CRM_TOOLS, *ERP_TOOLS, *ANALYTICS_TOOLS]).freeze()


__all__ = [
    "ANALYTICS_TOOLS",
    "BusinessServices",
    "CRM_TOOLS",
    "ERP_TOOLS",
    "OrgContext",
    "Tool",
    "ToolRegistry",
    "build_default_registry",
]
