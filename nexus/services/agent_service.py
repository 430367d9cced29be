"""Read access to agents, their tool bindings and granted permissions.

The engine never mutates agents; the create/bind helpers exist for the
admin surface and for seeding.
"""

import logging
from typing import Any

from sqlalchemy.orm import Session

from nexus.db.models import Agent, AgentPermission, AgentStatus, AgentTool
from nexus.errors import NotFoundError

logger = logging.getLogger(__name__)


class AgentService:
    """Organization-scoped agent lookups.

    Args:
        db: SQLAlchemy session.
    """

    def __init__(self, db: Session) -> None:
        self._db = db

    def get_agent(self, org_id: str, agent_id: str) -> Agent:
        """Load an agent in an org.

        Raises:
            NotFoundError: If the agent does not exist in this org.
        """
        agent = self._db.query(Agent).filter_by(id=agent_id, org_id=org_id).first()
        if agent is None:
            raise NotFoundError("Agent", agent_id)
        return agent

    def find_active_agent(self, org_id: str, agent_id: str) -> Agent | None:
        return (
            self._db.query(Agent)
            .filter_by(id=agent_id, org_id=org_id, status=AgentStatus.active.value)
            .first()
        )

    def tool_keys(self, agent_id: str) -> list[str]:
        """Registry keys bound to the agent, in a stable order."""
        rows = (
            self._db.query(AgentTool.tool_key)
            .filter_by(agent_id=agent_id)
            .order_by(AgentTool.tool_key)
            .all()
        )
        return [r[0] for r in rows]

    def permissions(self, agent_id: str) -> frozenset[str]:
        rows = (
            self._db.query(AgentPermission.permission)
            .filter_by(agent_id=agent_id)
            .all()
        )
        return frozenset(r[0] for r in rows)

    def create_agent(
        self,
        org_id: str,
        name: str,
        config: dict[str, Any] | None = None,
        tool_keys: list[str] | None = None,
        permissions: list[str] | None = None,
        description: str | None = None,
        status: str = AgentStatus.active.value,
    ) -> Agent:
        """Create an agent with its tool bindings and permissions."""
        agent = Agent(org_id=org_id, name=name, description=description, status=status)
        agent.config = config or {}
        agent.tools = [AgentTool(tool_key=k) for k in dict.fromkeys(tool_keys or [])]
        agent.permissions = [
            AgentPermission(permission=p) for p in dict.fromkeys(permissions or [])
        ]
        self._db.add(agent)
        self._db.commit()
        logger.info("Created agent %s (%s) in org %s", agent.id, name, org_id)
        return agent
