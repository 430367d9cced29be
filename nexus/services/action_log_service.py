"""Agent action log: one row per attempted tool invocation.

Rows are created as success/failed for calls that run immediately, or as
pending_approval for destructive calls. A pending row is resolved exactly
once through claim(), a conditional UPDATE that only the first caller wins.
"""

import json
import logging
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from nexus.db.models import ActionStatus, AgentActionLog, utc_now_iso
from nexus.errors import ApprovalConflictError, NotFoundError
from nexus.utils.redaction import redact_for_logging

logger = logging.getLogger(__name__)


def _dumps(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, default=str)


class ActionLogService:
    """CRUD and state transitions for AgentActionLog rows.

    Args:
        db: SQLAlchemy session.
    """

    def __init__(self, db: Session) -> None:
        self._db = db

    def create(
        self,
        org_id: str,
        agent_id: str,
        conversation_id: str | None,
        action: str,
        input: dict[str, Any],
        status: str,
        tool_key: str | None = None,
        tool_call_id: str | None = None,
        output: Any = None,
    ) -> AgentActionLog:
        """Insert an action log row."""
        row = AgentActionLog(
            org_id=org_id,
            agent_id=agent_id,
            conversation_id=conversation_id,
            tool_key=tool_key,
            action=action,
            tool_call_id=tool_call_id,
            input_json=_dumps(input),
            output_json=_dumps(output),
            status=status,
        )
        if status != ActionStatus.pending_approval.value:
            row.resolved_at = row.created_at = utc_now_iso()
        self._db.add(row)
        self._db.commit()
        logger.info(
            "Action %s logged: %s %s args=%s",
            row.id, action, status, redact_for_logging(input),
        )
        return row

    def get(self, org_id: str, action_id: str) -> AgentActionLog:
        """Load an action scoped to an org.

        Raises:
            NotFoundError: If the action does not exist in this org.
        """
        row = (
            self._db.query(AgentActionLog)
            .filter_by(id=action_id, org_id=org_id)
            .first()
        )
        if row is None:
            raise NotFoundError("ActionLog", action_id)
        return row

    def claim(
        self,
        org_id: str,
        action_id: str,
        new_status: str,
        resolved_by: str | None = None,
        output: Any = None,
    ) -> AgentActionLog:
        """Atomically move a pending_approval row to new_status.

        Only one caller can win; everyone else gets ApprovalConflictError and
        the row is left untouched.

        Raises:
            NotFoundError: If the action does not exist in this org.
            ApprovalConflictError: If the action is no longer pending.
        """
        result = self._db.execute(
            update(AgentActionLog)
            .where(
                AgentActionLog.id == action_id,
                AgentActionLog.org_id == org_id,
                AgentActionLog.status == ActionStatus.pending_approval.value,
            )
            .values(
                status=new_status,
                approved_by=resolved_by,
                output_json=_dumps(output),
                resolved_at=utc_now_iso(),
            )
            .execution_options(synchronize_session=False)
        )
        self._db.commit()

        row = self.get(org_id, action_id)
        self._db.refresh(row)
        if result.rowcount != 1:
            raise ApprovalConflictError(action_id, row.status)
        return row

    def resolve(
        self, row: AgentActionLog, status: str, output: Any = None
    ) -> AgentActionLog:
        """Record the final status/output of a claimed action."""
        row.status = status
        row.output_json = _dumps(output)
        row.resolved_at = utc_now_iso()
        self._db.commit()
        return row

    def list_pending(
        self, org_id: str, conversation_id: str | None = None
    ) -> list[AgentActionLog]:
        """Actions awaiting approval, oldest first."""
        query = self._db.query(AgentActionLog).filter_by(
            org_id=org_id, status=ActionStatus.pending_approval.value
        )
        if conversation_id is not None:
            query = query.filter_by(conversation_id=conversation_id)
        return query.order_by(AgentActionLog.created_at).all()
