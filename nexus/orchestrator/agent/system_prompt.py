"""System prompt and model-history builder for agent turns.

Model context is never cached between turns: every model call rebuilds it
from the stored, sequence-ordered message log. The mapping is pure and
deterministic, so the same log always produces the same history.

Example:
    prompt = build_system_prompt(runtime_config, agent.name)
    history = conversation_to_llm_messages(messages, agent.id)
"""

import json
import logging
from collections.abc import Iterable
from typing import Any

from nexus.db.models import ContentType, Message, SenderType
from nexus.orchestrator.agent.config import AgentRuntimeConfig
from nexus.orchestrator.agent.llm.types import LLMMessage, ToolCall

logger = logging.getLogger(__name__)

_BASE_PROMPT = """You are {name}, an AI assistant integrated into the Nexus business platform. You have access to CRM and ERP tools to help users manage their business data.

Guidelines:
- Be concise and helpful
- When using tools, explain what you're doing
- For destructive actions (creating orders, etc.), confirm the details before proceeding
- Format data in a clear, readable way
- If you're unsure about something, ask for clarification"""

DEFAULT_AGENT_NAME = "AI Assistant"

PENDING_APPROVAL_RESULT = json.dumps({
    "status": "pending_approval",
    "message": "This action is awaiting user approval and has not been executed yet.",
})


def build_system_prompt(config: AgentRuntimeConfig, agent_name: str | None) -> str:
    """Build the platform preamble plus the agent's custom instructions.

    Args:
        config: Parsed agent runtime config.
        agent_name: Agent display name.

    Returns:
        Complete system prompt string.
    """
    prompt = _BASE_PROMPT.format(name=agent_name or DEFAULT_AGENT_NAME)
    custom = (config.system_prompt or "").strip()
    if custom:
        prompt = f"{prompt}\n\nAdditional instructions:\n{custom}"
    return prompt


def _tool_calls_from_meta(meta: dict[str, Any]) -> list[ToolCall]:
    raw = meta.get("toolCalls")
    if not isinstance(raw, list):
        return []
    return [ToolCall.from_dict(tc) for tc in raw if isinstance(tc, dict) and tc.get("id")]


def conversation_to_llm_messages(
    stored: Iterable[Message], agent_id: str
) -> list[LLMMessage]:
    """Map the stored message log to neutral model messages.

    Rules, in order:
        - tool_result -> tool message keyed by its stored toolCallId
        - action_request -> dropped (UI-only)
        - this agent's tool_call -> assistant with tool calls from metadata
        - this agent's other messages -> assistant
        - everything else (users, system, other agents) -> user

    Vendors reject histories where a tool call lacks a result, or a result
    lacks a call. So a call still unanswered when the next non-tool message
    arrives gets a synthetic "pending approval" result at that point, and a
    result whose call is not open is dropped.

    Args:
        stored: Messages in sequence order.
        agent_id: The agent the history is built for.

    Returns:
        Ordered list of LLMMessage.
    """
    result: list[LLMMessage] = []
    # call id -> tool name, for calls still waiting on a result
    open_calls: dict[str, str] = {}

    def close_open_calls() -> None:
        for call_id, name in open_calls.items():
            result.append(
                LLMMessage(
                    role="tool",
                    content=PENDING_APPROVAL_RESULT,
                    tool_call_id=call_id,
                    name=name,
                )
            )
        open_calls.clear()

    for msg in stored:
        meta = msg.meta
        own = msg.sender_type == SenderType.agent.value and msg.sender_id == agent_id

        if msg.content_type == ContentType.tool_result.value:
            call_id = meta.get("toolCallId")
            if not call_id or call_id not in open_calls:
                logger.debug("Dropping tool result %s with no open call", msg.id)
                continue
            name = open_calls.pop(call_id)
            result.append(
                LLMMessage(
                    role="tool",
                    content=msg.content,
                    tool_call_id=call_id,
                    name=meta.get("toolName") or name,
                )
            )
            continue

        if msg.content_type == ContentType.action_request.value:
            continue

        close_open_calls()

        if own and msg.content_type == ContentType.tool_call.value:
            calls = _tool_calls_from_meta(meta)
            result.append(LLMMessage(role="assistant", content=msg.content or "", tool_calls=calls))
            open_calls.update((tc.id, tc.name) for tc in calls)
        elif own:
            result.append(LLMMessage(role="assistant", content=msg.content))
        else:
            result.append(LLMMessage(role="user", content=msg.content))

    close_open_calls()
    return result
