"""Approval workflow for destructive tool calls.

A suspended turn exists only as a pending_approval ActionLog row plus its
action_request message. Approving or rejecting claims that row with a
conditional UPDATE, so a double click (or two admins) can resolve it only
once. Approval claims it as executing before the tool runs and records the
final status afterwards. Both paths run under the conversation's turn lock.

Example:
    handler = ApprovalHandler(engine)
    outcome = await handler.approve(ctx, action_id)
"""

import json
import logging
from dataclasses import dataclass
from typing import Any

from nexus.db.models import ActionStatus, AgentActionLog, AgentStatus, ContentType, SenderType
from nexus.errors import (
    CredentialError,
    ToolExecutionError,
    UnknownToolError,
    UnsupportedProviderError,
)
from nexus.orchestrator.agent.config import AgentRuntimeConfig
from nexus.orchestrator.agent.engine import (
    NO_API_KEY_MESSAGE,
    ExecutionContext,
    TurnEngine,
    TurnResult,
    conv_room,
    dump_result,
    error_message,
    persist_and_emit,
    safe_emit,
)
from nexus.services.action_log_service import ActionLogService
from nexus.services.agent_service import AgentService
from nexus.utils.redaction import sanitize_error_message

logger = logging.getLogger(__name__)


def approved_content(tool_name: str, result: Any) -> str:
    return (
        f"Action approved and executed: **{tool_name}**\n\n"
        f"Result: {json.dumps(result, indent=2, default=str)}"
    )


def approved_failed_content(tool_name: str, error: str) -> str:
    return f'Action "{tool_name}" was approved but failed to execute: {error}'


def rejected_content(tool_name: str, reason: str | None) -> str:
    suffix = f": {reason}" if reason else ""
    return (
        f'Action "{tool_name}" was rejected{suffix}. '
        "Let me know if you'd like to do something else."
    )


def summarize_request(tool_name: str, result: Any) -> str:
    return (
        f'The action "{tool_name}" was approved and executed successfully. '
        f"Here is the result: {dump_result(result)}. "
        "Please summarize this for the user."
    )


@dataclass
class ApprovalOutcome:
    """Result of approving or rejecting an action.

    Attributes:
        action: The resolved ActionLog row.
        message_id: The action_result message id.
        turn: The resumed turn, when the agent was asked to summarize.
    """

    action: AgentActionLog
    message_id: str
    turn: TurnResult | None = None


class ApprovalHandler:
    """Resolves pending actions and resumes the suspended turn.

    Args:
        engine: Engine whose registry executes the approved tool and whose
            locks serialize the conversation.
    """

    def __init__(self, engine: TurnEngine) -> None:
        self.engine = engine

    async def approve(
        self, ctx: ExecutionContext, action_id: str, approved_by: str | None = None
    ) -> ApprovalOutcome:
        """Execute a pending action and let the agent continue.

        Args:
            ctx: Execution context.
            action_id: The pending ActionLog id.
            approved_by: Approver to record; defaults to ctx.user_id.

        Returns:
            ApprovalOutcome with the resolved row.

        Raises:
            NotFoundError: If the action does not exist in ctx's org.
            ApprovalConflictError: If the action was already resolved.
        """
        approved_by = approved_by or ctx.user_id
        actions = ActionLogService(ctx.db)
        pending = actions.get(ctx.org_id, action_id)
        conversation_id = pending.conversation_id or ""

        async with self.engine.locks.hold(conversation_id):
            row = actions.claim(
                ctx.org_id,
                action_id,
                ActionStatus.executing.value,
                resolved_by=approved_by,
            )
            agent = AgentService(ctx.db).get_agent(ctx.org_id, row.agent_id)
            config = AgentRuntimeConfig.from_agent_config(agent.config)
            logger.info("Action %s (%s) approved by %s", row.id, row.action, approved_by)

            output: Any
            try:
                tool = (
                    self.engine.registry.by_key(row.tool_key)
                    if row.tool_key
                    else self.engine.registry.by_name(row.action)
                )
                output = await self.engine.registry.execute(
                    tool.name, ctx.org_context(agent.id), row.input
                )
                failed_reason = None
            except (ToolExecutionError, UnknownToolError) as e:
                failed_reason = sanitize_error_message(
                    e.reason if isinstance(e, ToolExecutionError) else str(e)
                )
                output = {"error": failed_reason}

            status = ActionStatus.failed.value if failed_reason else ActionStatus.success.value
            actions.resolve(row, status, output)

            await safe_emit(ctx, conv_room(conversation_id), "tool-execution", {
                "conversationId": conversation_id,
                "agentId": agent.id,
                "toolName": row.action,
                "status": "failed" if failed_reason else "completed",
            })
            await self._persist_tool_result(
                ctx, row, config, output, is_error=failed_reason is not None
            )

            if failed_reason:
                logger.warning("Approved action %s failed: %s", row.id, failed_reason)
                msg = await persist_and_emit(
                    ctx,
                    conversation_id,
                    SenderType.agent.value,
                    agent.id,
                    approved_failed_content(row.action, failed_reason),
                    content_type=ContentType.action_result.value,
                    metadata={"actionId": row.id, "toolName": row.action, "error": failed_reason},
                )
                return ApprovalOutcome(action=row, message_id=msg.id)

            msg = await persist_and_emit(
                ctx,
                conversation_id,
                SenderType.agent.value,
                agent.id,
                approved_content(row.action, output),
                content_type=ContentType.action_result.value,
                metadata={"actionId": row.id, "toolName": row.action, "result": output},
            )
            outcome = ApprovalOutcome(action=row, message_id=msg.id)

            if not config.summarize_approved_results:
                return outcome
            if agent.status != AgentStatus.active.value:
                logger.info("Agent %s is %s; not resuming after approval", agent.id, agent.status)
                return outcome

            await persist_and_emit(
                ctx,
                conversation_id,
                SenderType.system.value,
                agent.id,
                summarize_request(row.action, output),
                emit=False,
            )
            try:
                outcome.turn = await self.engine.run_turn(
                    ctx, agent, conversation_id, hold_lock=False
                )
            except CredentialError as e:
                logger.warning("Cannot resume agent %s after approval: %s", agent.id, e)
                await persist_and_emit(
                    ctx, conversation_id, SenderType.agent.value, agent.id, NO_API_KEY_MESSAGE
                )
            except UnsupportedProviderError as e:
                logger.warning("Cannot resume agent %s after approval: %s", agent.id, e)
                await persist_and_emit(
                    ctx, conversation_id, SenderType.agent.value, agent.id, error_message(str(e))
                )
            return outcome

    async def reject(
        self,
        ctx: ExecutionContext,
        action_id: str,
        reason: str | None = None,
        rejected_by: str | None = None,
    ) -> ApprovalOutcome:
        """Reject a pending action. The tool is never executed.

        Raises:
            NotFoundError: If the action does not exist in ctx's org.
            ApprovalConflictError: If the action was already resolved.
        """
        rejected_by = rejected_by or ctx.user_id
        actions = ActionLogService(ctx.db)
        pending = actions.get(ctx.org_id, action_id)
        conversation_id = pending.conversation_id or ""
        output = {"rejected": True, "reason": reason}

        async with self.engine.locks.hold(conversation_id):
            row = actions.claim(
                ctx.org_id,
                action_id,
                ActionStatus.failed.value,
                resolved_by=rejected_by,
                output=output,
            )
            agent = AgentService(ctx.db).get_agent(ctx.org_id, row.agent_id)
            config = AgentRuntimeConfig.from_agent_config(agent.config)
            logger.info("Action %s (%s) rejected by %s", row.id, row.action, rejected_by)

            await safe_emit(ctx, conv_room(conversation_id), "tool-execution", {
                "conversationId": conversation_id,
                "agentId": agent.id,
                "toolName": row.action,
                "status": "rejected",
            })
            await self._persist_tool_result(
                ctx,
                row,
                config,
                {"status": "rejected", "message": "The user rejected this action.", "reason": reason},
                is_error=True,
            )
            msg = await persist_and_emit(
                ctx,
                conversation_id,
                SenderType.agent.value,
                agent.id,
                rejected_content(row.action, reason),
                content_type=ContentType.action_result.value,
                metadata={"actionId": row.id, "rejected": True, "reason": reason},
            )
            return ApprovalOutcome(action=row, message_id=msg.id)

    async def _persist_tool_result(
        self,
        ctx: ExecutionContext,
        row: AgentActionLog,
        config: AgentRuntimeConfig,
        payload: Any,
        is_error: bool,
    ) -> None:
        if not row.tool_call_id or not row.conversation_id:
            return
        await persist_and_emit(
            ctx,
            row.conversation_id,
            SenderType.agent.value,
            row.agent_id,
            dump_result(payload),
            content_type=ContentType.tool_result.value,
            metadata={
                "toolCallId": row.tool_call_id,
                "toolName": row.action,
                "actionId": row.id,
                "isError": is_error,
            },
            emit=config.show_raw_tool_results,
        )
