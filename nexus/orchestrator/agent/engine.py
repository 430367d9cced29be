"""Agent turn engine.

Runs one agent turn against a conversation:

    Idle -> ModelCall -> ToolExecuting -> ModelCall -> ... -> Idle
                      -> AwaitingApproval (suspended; lives only in storage)

Each model call rebuilds context from the stored message log. Tool calls the
agent may run are executed immediately; a destructive call that needs
approval is recorded as a pending_approval action and the turn stops. The
approval handler later re-enters run_turn to finish it.

Every message is persisted before it is emitted. Emit failures are logged
and never break a turn.

Example:
    engine = TurnEngine(build_default_registry(), EngineSettings.from_env())
    result = await engine.run_turn(ctx, agent, conversation_id)
"""

import inspect
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy.orm import Session

from nexus.db.models import ActionStatus, Agent, AgentStatus, ContentType, Message, SenderType
from nexus.errors import (
    AgentUnavailableError,
    CredentialError,
    ProviderError,
    ToolExecutionError,
    ToolPermissionError,
    UnknownToolError,
    UnsupportedProviderError,
)
from nexus.orchestrator.agent.config import (
    SUPPORTED_PROVIDERS,
    AgentRuntimeConfig,
    EngineSettings,
)
from nexus.orchestrator.agent.llm import create_llm_client
from nexus.orchestrator.agent.llm.types import (
    LLMClient,
    LLMMessage,
    LLMOptions,
    LLMResponse,
    ToolCall,
    ToolDefinition,
    Usage,
)
from nexus.orchestrator.agent.system_prompt import (
    build_system_prompt,
    conversation_to_llm_messages,
)
from nexus.orchestrator.agent.tools.registry import ToolRegistry
from nexus.orchestrator.agent.tools.types import BusinessServices, OrgContext, Tool
from nexus.services.action_log_service import ActionLogService
from nexus.services.agent_service import AgentService
from nexus.services.conversation_locks import ConversationTurnLocks
from nexus.services.conversation_persistence_service import ConversationPersistenceService
from nexus.services.provider_keys_service import ProviderKeyService
from nexus.utils.redaction import redact_for_logging, sanitize_error_message

logger = logging.getLogger(__name__)

EmitFn = Callable[[str, str, dict[str, Any]], Any]
ClientFactory = Callable[[str, str], LLMClient]

NO_API_KEY_MESSAGE = (
    "I cannot respond right now because no API key is configured for my AI provider. "
    "Please ask an admin to add one in Settings."
)

NOT_EXECUTED_RESULT = {
    "status": "not_executed",
    "message": "Not executed: an earlier action in this step is awaiting user approval.",
}


def conv_room(conversation_id: str) -> str:
    return f"conv:{conversation_id}"


def org_room(org_id: str) -> str:
    return f"org:{org_id}"


def error_message(reason: str) -> str:
    return f"I encountered an error: {reason}. Please try again."


def tool_use_without_calls_message() -> str:
    return (
        "I tried to use a tool, but the response did not include which tool "
        "to run. Please try again."
    )


def iteration_limit_message(limit: int) -> str:
    return (
        f"I stopped after {limit} tool steps without reaching an answer. "
        "Please narrow the request or ask me to continue."
    )


def action_request_content(tool_name: str, args: dict[str, Any]) -> str:
    return (
        f"I need approval to execute: **{tool_name}**\n\n"
        f"Parameters: {json.dumps(args, indent=2, default=str)}"
    )


def dump_result(result: Any) -> str:
    return json.dumps(result, default=str)


class TurnOutcome(str, Enum):
    """How a turn ended."""

    completed = "completed"
    awaiting_approval = "awaiting_approval"
    tool_use_without_calls = "tool_use_without_calls"
    iteration_limit = "iteration_limit"
    provider_error = "provider_error"


@dataclass
class TurnResult:
    """Summary of a finished (or suspended) turn.

    Attributes:
        outcome: How the turn ended.
        iterations: Model calls made.
        final_message_id: Terminal message persisted, if any.
        pending_action_id: ActionLog id awaiting approval, if suspended.
        usage: Token usage summed over all model calls.
    """

    outcome: TurnOutcome
    iterations: int = 0
    final_message_id: str | None = None
    pending_action_id: str | None = None
    usage: Usage = field(default_factory=Usage)


@dataclass
class ExecutionContext:
    """Everything a turn needs from its caller.

    Attributes:
        db: SQLAlchemy session used for all reads and writes of the turn.
        emit: Real-time emitter, called as emit(room, event, payload).
        org_id: Tenant the turn runs in.
        services: CRM/ERP services for tool handlers.
        master_key: Vault key; loaded from the environment when None.
        user_id: User who triggered the turn or approved the action.
    """

    db: Session
    emit: EmitFn
    org_id: str
    services: BusinessServices = field(default_factory=BusinessServices)
    master_key: bytes | None = None
    user_id: str | None = None

    def org_context(self, agent_id: str) -> OrgContext:
        return OrgContext(
            org_id=self.org_id,
            services=self.services,
            user_id=self.user_id,
            agent_id=agent_id,
        )


async def safe_emit(ctx: ExecutionContext, room: str, event: str, payload: dict[str, Any]) -> None:
    """Emit an event, logging instead of raising on failure."""
    try:
        result = ctx.emit(room, event, payload)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        logger.warning("Emit %s to %s failed: %s", event, room, e)


async def persist_and_emit(
    ctx: ExecutionContext,
    conversation_id: str,
    sender_type: str,
    sender_id: str,
    content: str,
    content_type: str = ContentType.text.value,
    metadata: dict[str, Any] | None = None,
    emit: bool = True,
) -> Message:
    """Append a message, then announce it to the conversation and org rooms."""
    msg = ConversationPersistenceService(ctx.db).append_message(
        org_id=ctx.org_id,
        conversation_id=conversation_id,
        sender_type=sender_type,
        sender_id=sender_id,
        content=content,
        content_type=content_type,
        metadata=metadata,
    )
    if emit:
        payload = msg.to_dict()
        await safe_emit(ctx, conv_room(conversation_id), "new-message", payload)
        await safe_emit(
            ctx,
            org_room(ctx.org_id),
            "conversation-updated",
            {"conversationId": conversation_id, "lastMessage": payload},
        )
    return msg


@dataclass
class _TurnState:
    """Per-turn working set. Holds the decrypted client, never the key."""

    agent: Agent
    config: AgentRuntimeConfig
    client: LLMClient
    options: LLMOptions
    system_prompt: str
    tools_by_name: dict[str, Tool]
    tool_defs: list[ToolDefinition]
    permissions: frozenset[str]
    stream_message_id: str


class TurnEngine:
    """Drives agent turns.

    Args:
        registry: Frozen tool registry shared by all turns.
        settings: Engine settings (iteration cap, concurrency mode).
        locks: Per-conversation locks; created from settings when omitted.
        client_factory: Builds an LLMClient from (provider, api_key).
    """

    def __init__(
        self,
        registry: ToolRegistry,
        settings: EngineSettings | None = None,
        locks: ConversationTurnLocks | None = None,
        client_factory: ClientFactory = create_llm_client,
    ) -> None:
        self.registry = registry
        self.settings = settings or EngineSettings()
        self.locks = locks or ConversationTurnLocks(self.settings.turn_concurrency)
        self._client_factory = client_factory

    async def run_turn(
        self,
        ctx: ExecutionContext,
        agent: Agent,
        conversation_id: str,
        hold_lock: bool = True,
    ) -> TurnResult:
        """Run the agent against the conversation until it answers or suspends.

        Args:
            ctx: Execution context.
            agent: Agent taking the turn.
            conversation_id: Conversation to respond in.
            hold_lock: Take the conversation lock. Callers already holding
                it (the approval handler) pass False.

        Returns:
            TurnResult describing how the turn ended.

        Raises:
            AgentUnavailableError: If the agent is not active.
            UnsupportedProviderError: If the agent's provider has no adapter.
            CredentialError: If the org has no usable key for the provider.
            TurnInProgressError: In reject mode, if another turn is running.
        """
        if agent.status != AgentStatus.active.value:
            raise AgentUnavailableError(agent.id, agent.status)

        if not hold_lock:
            return await self._run(ctx, agent, conversation_id)
        async with self.locks.hold(conversation_id):
            return await self._run(ctx, agent, conversation_id)

    def _prepare(self, ctx: ExecutionContext, agent: Agent) -> _TurnState:
        config = AgentRuntimeConfig.from_agent_config(agent.config)
        if config.provider not in SUPPORTED_PROVIDERS:
            raise UnsupportedProviderError(config.provider)

        api_key = ProviderKeyService(ctx.db, ctx.master_key).get_decrypted_key(
            ctx.org_id, config.provider
        )
        if not api_key:
            raise CredentialError(config.provider)
        client = self._client_factory(config.provider, api_key)

        agent_svc = AgentService(ctx.db)
        tools = self.registry.tools_for(agent_svc.tool_keys(agent.id))
        return _TurnState(
            agent=agent,
            config=config,
            client=client,
            options=LLMOptions(
                model=config.model or "",
                temperature=config.temperature,
                max_tokens=config.max_tokens,
            ),
            system_prompt=build_system_prompt(config, agent.name),
            tools_by_name={t.name: t for t in tools},
            tool_defs=[t.definition() for t in tools],
            permissions=agent_svc.permissions(agent.id),
            stream_message_id=f"stream-{uuid4().hex}",
        )

    async def _run(
        self, ctx: ExecutionContext, agent: Agent, conversation_id: str
    ) -> TurnResult:
        persistence = ConversationPersistenceService(ctx.db)
        persistence.get_conversation(ctx.org_id, conversation_id)
        state = self._prepare(ctx, agent)

        room = conv_room(conversation_id)
        await safe_emit(
            ctx, room, "agent-typing", {"conversationId": conversation_id, "agentId": agent.id}
        )
        result = TurnResult(outcome=TurnOutcome.completed)
        try:
            await self._loop(ctx, state, conversation_id, result)
        finally:
            await safe_emit(ctx, room, "message-stream", {
                "conversationId": conversation_id,
                "agentId": agent.id,
                "messageId": state.stream_message_id,
                "chunk": "",
                "isComplete": True,
            })
            await safe_emit(
                ctx,
                room,
                "agent-typing-stop",
                {"conversationId": conversation_id, "agentId": agent.id},
            )
        logger.info(
            "Turn for agent %s in conversation %s ended: %s after %d iteration(s) "
            "(tokens in=%d out=%d)",
            agent.id, conversation_id, result.outcome.value, result.iterations,
            result.usage.input_tokens, result.usage.output_tokens,
        )
        return result

    async def _loop(
        self,
        ctx: ExecutionContext,
        state: _TurnState,
        conversation_id: str,
        result: TurnResult,
    ) -> None:
        persistence = ConversationPersistenceService(ctx.db)
        agent_id = state.agent.id

        while result.iterations < self.settings.max_tool_iterations:
            result.iterations += 1
            history = conversation_to_llm_messages(
                persistence.list_messages(ctx.org_id, conversation_id), agent_id
            )
            messages = [LLMMessage(role="system", content=state.system_prompt), *history]

            try:
                response = await self._call_model(ctx, state, conversation_id, messages)
            except ProviderError as e:
                logger.error(
                    "Provider error in conversation %s (agent %s): %s",
                    conversation_id, agent_id, e,
                )
                msg = await self._say(
                    ctx, conversation_id, agent_id,
                    error_message(sanitize_error_message(e.reason) or "provider error"),
                )
                result.outcome = TurnOutcome.provider_error
                result.final_message_id = msg.id
                return

            if response.usage is not None:
                result.usage.input_tokens += response.usage.input_tokens
                result.usage.output_tokens += response.usage.output_tokens

            if not response.tool_calls:
                if response.finish_reason == "tool_use":
                    logger.warning(
                        "Model signalled tool_use with no tool calls (conversation %s)",
                        conversation_id,
                    )
                    msg = await self._say(
                        ctx, conversation_id, agent_id, tool_use_without_calls_message()
                    )
                    result.outcome = TurnOutcome.tool_use_without_calls
                    result.final_message_id = msg.id
                    return
                if response.content:
                    msg = await self._say(ctx, conversation_id, agent_id, response.content)
                    result.final_message_id = msg.id
                else:
                    logger.warning(
                        "Model returned an empty answer (conversation %s)", conversation_id
                    )
                result.outcome = TurnOutcome.completed
                return

            await persist_and_emit(
                ctx,
                conversation_id,
                SenderType.agent.value,
                agent_id,
                response.content,
                content_type=ContentType.tool_call.value,
                metadata={"toolCalls": [tc.to_dict() for tc in response.tool_calls]},
                emit=state.config.show_raw_tool_results,
            )

            calls = response.tool_calls
            for index, call in enumerate(calls):
                pending_action_id = await self._resolve_call(ctx, state, conversation_id, call)
                if pending_action_id is not None:
                    for skipped in calls[index + 1:]:
                        await self._persist_tool_result(
                            ctx, state, conversation_id, skipped, NOT_EXECUTED_RESULT,
                            is_error=True,
                        )
                    result.outcome = TurnOutcome.awaiting_approval
                    result.pending_action_id = pending_action_id
                    return

        logger.warning(
            "Turn hit the tool iteration limit (%d) in conversation %s",
            self.settings.max_tool_iterations, conversation_id,
        )
        msg = await self._say(
            ctx, conversation_id, agent_id,
            iteration_limit_message(self.settings.max_tool_iterations),
        )
        result.outcome = TurnOutcome.iteration_limit
        result.final_message_id = msg.id

    async def _call_model(
        self,
        ctx: ExecutionContext,
        state: _TurnState,
        conversation_id: str,
        messages: list[LLMMessage],
    ) -> LLMResponse:
        tools = state.tool_defs or None
        if not state.config.stream:
            return await state.client.send(messages, tools, state.options)

        text_parts: list[str] = []
        tool_calls: list[ToolCall] = []
        response = LLMResponse(content="")
        async for chunk in state.client.stream(messages, tools, state.options):
            if chunk.type == "text_delta" and chunk.text:
                text_parts.append(chunk.text)
                await safe_emit(ctx, conv_room(conversation_id), "message-stream", {
                    "conversationId": conversation_id,
                    "agentId": state.agent.id,
                    "messageId": state.stream_message_id,
                    "chunk": chunk.text,
                    "isComplete": False,
                })
            elif chunk.type == "tool_call_end" and chunk.tool_call is not None:
                tool_calls.append(chunk.tool_call)
            elif chunk.type == "done":
                response.finish_reason = chunk.finish_reason or "end_turn"
                response.usage = chunk.usage
        response.content = "".join(text_parts)
        response.tool_calls = tool_calls
        return response

    async def _say(
        self, ctx: ExecutionContext, conversation_id: str, agent_id: str, content: str
    ) -> Message:
        return await persist_and_emit(
            ctx, conversation_id, SenderType.agent.value, agent_id, content
        )

    async def _persist_tool_result(
        self,
        ctx: ExecutionContext,
        state: _TurnState,
        conversation_id: str,
        call: ToolCall,
        payload: Any,
        is_error: bool = False,
        action_id: str | None = None,
    ) -> Message:
        metadata: dict[str, Any] = {
            "toolCallId": call.id,
            "toolName": call.name,
            "isError": is_error,
        }
        if action_id is not None:
            metadata["actionId"] = action_id
        return await persist_and_emit(
            ctx,
            conversation_id,
            SenderType.agent.value,
            state.agent.id,
            dump_result(payload),
            content_type=ContentType.tool_result.value,
            metadata=metadata,
            emit=state.config.show_raw_tool_results,
        )

    async def _emit_tool_execution(
        self,
        ctx: ExecutionContext,
        state: _TurnState,
        conversation_id: str,
        tool_name: str,
        status: str,
        tool: Tool | None = None,
        args: dict[str, Any] | None = None,
        result: Any = None,
    ) -> None:
        payload: dict[str, Any] = {
            "conversationId": conversation_id,
            "agentId": state.agent.id,
            "toolName": tool_name,
            "status": status,
        }
        if tool is not None and tool.emit_result and status in ("completed", "failed"):
            payload["toolArgs"] = args
            payload["result"] = result
        await safe_emit(ctx, conv_room(conversation_id), "tool-execution", payload)

    def _check_allowed(self, state: _TurnState, call: ToolCall) -> Tool:
        tool = state.tools_by_name.get(call.name)
        if tool is None:
            raise UnknownToolError(call.name)
        if tool.required_permission and tool.required_permission not in state.permissions:
            raise ToolPermissionError(call.name, tool.required_permission)
        return tool

    async def _resolve_call(
        self,
        ctx: ExecutionContext,
        state: _TurnState,
        conversation_id: str,
        call: ToolCall,
    ) -> str | None:
        """Handle one tool call. Returns the action id if the turn must suspend."""
        try:
            tool = self._check_allowed(state, call)
        except (UnknownToolError, ToolPermissionError) as e:
            logger.warning("Refused tool call %s: %s", call.name, e)
            await self._emit_tool_execution(ctx, state, conversation_id, call.name, "failed")
            await self._persist_tool_result(
                ctx, state, conversation_id, call,
                {"error": str(e), "code": e.code},
                is_error=True,
            )
            return None

        actions = ActionLogService(ctx.db)

        if tool.is_destructive and state.config.require_approval:
            action = actions.create(
                org_id=ctx.org_id,
                agent_id=state.agent.id,
                conversation_id=conversation_id,
                action=tool.name,
                tool_key=tool.key,
                tool_call_id=call.id,
                input=call.arguments,
                status=ActionStatus.pending_approval.value,
            )
            await self._emit_tool_execution(
                ctx, state, conversation_id, tool.name, "pending_approval"
            )
            await persist_and_emit(
                ctx,
                conversation_id,
                SenderType.agent.value,
                state.agent.id,
                action_request_content(tool.name, call.arguments),
                content_type=ContentType.action_request.value,
                metadata={
                    "actionId": action.id,
                    "toolName": tool.name,
                    "toolArgs": call.arguments,
                    "toolCallId": call.id,
                },
            )
            logger.info(
                "Action %s (%s) awaiting approval in conversation %s args=%s",
                action.id, tool.name, conversation_id, redact_for_logging(call.arguments),
            )
            return action.id

        await self._emit_tool_execution(ctx, state, conversation_id, tool.name, "started")
        try:
            output = await self.registry.execute(
                tool.name, ctx.org_context(state.agent.id), call.arguments
            )
            status = ActionStatus.success.value
            is_error = False
        except ToolExecutionError as e:
            output = {"error": e.reason}
            status = ActionStatus.failed.value
            is_error = True

        action = actions.create(
            org_id=ctx.org_id,
            agent_id=state.agent.id,
            conversation_id=conversation_id,
            action=tool.name,
            tool_key=tool.key,
            tool_call_id=call.id,
            input=call.arguments,
            output=output,
            status=status,
        )
        await self._emit_tool_execution(
            ctx, state, conversation_id, tool.name,
            "failed" if is_error else "completed",
            tool=tool, args=call.arguments, result=output,
        )
        await self._persist_tool_result(
            ctx, state, conversation_id, call, output,
            is_error=is_error, action_id=action.id,
        )
        return None
