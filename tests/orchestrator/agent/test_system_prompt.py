"""Tests for the system prompt and stored-history mapping."""

import json

from nexus.db.models import Message
from nexus.orchestrator.agent.config import AgentRuntimeConfig
from nexus.orchestrator.agent.system_prompt import (
    PENDING_APPROVAL_RESULT,
    build_system_prompt,
    conversation_to_llm_messages,
)

AGENT = "agent-1"


def _msg(seq, sender_type, sender_id, content, content_type="text", meta=None):
    return Message(
        id=f"m{seq}",
        org_id="org-1",
        conversation_id="c1",
        sender_type=sender_type,
        sender_id=sender_id,
        content=content,
        content_type=content_type,
        metadata_json=json.dumps(meta) if meta else None,
        sequence=seq,
    )


def _tool_call(seq, *ids, text=""):
    calls = [{"id": i, "name": "list_orders", "arguments": {"status": "draft"}} for i in ids]
    return _msg(seq, "agent", AGENT, text, "tool_call", {"toolCalls": calls})


def _tool_result(seq, call_id, content='{"ok": true}'):
    return _msg(seq, "agent", AGENT, content, "tool_result",
                {"toolCallId": call_id, "toolName": "list_orders"})


class TestBuildSystemPrompt:
    def test_preamble_uses_agent_name(self):
        prompt = build_system_prompt(AgentRuntimeConfig(), "Ada")
        assert prompt.startswith("You are Ada,")
        assert "Additional instructions" not in prompt

    def test_appends_custom_instructions(self):
        cfg = AgentRuntimeConfig(systemPrompt="  Always answer in French.  ")
        prompt = build_system_prompt(cfg, None)
        assert "You are AI Assistant," in prompt
        assert prompt.endswith("Additional instructions:\nAlways answer in French.")


class TestConversationToLLMMessages:
    def test_role_mapping(self):
        history = conversation_to_llm_messages([
            _msg(1, "user", "u1", "hello"),
            _msg(2, "agent", AGENT, "hi there"),
            _msg(3, "agent", "other-agent", "I am someone else"),
            _msg(4, "system", AGENT, "summarize please"),
        ], AGENT)
        assert [m.role for m in history] == ["user", "assistant", "user", "user"]

    def test_tool_call_and_result_pair(self):
        history = conversation_to_llm_messages([
            _msg(1, "user", "u1", "drafts?"),
            _tool_call(2, "t1", text="Let me check."),
            _tool_result(3, "t1"),
            _msg(4, "agent", AGENT, "One draft."),
        ], AGENT)
        assert [m.role for m in history] == ["user", "assistant", "tool", "assistant"]
        assert history[1].content == "Let me check."
        assert history[1].tool_calls[0].id == "t1"
        assert history[1].tool_calls[0].arguments == {"status": "draft"}
        assert history[2].tool_call_id == "t1"
        assert history[2].name == "list_orders"

    def test_action_request_is_dropped(self):
        history = conversation_to_llm_messages([
            _tool_call(1, "t1"),
            _msg(2, "agent", AGENT, "I need approval", "action_request", {"actionId": "a1"}),
            _tool_result(3, "t1"),
        ], AGENT)
        assert [m.role for m in history] == ["assistant", "tool"]
        assert history[1].content == '{"ok": true}'

    def test_unanswered_call_gets_pending_result_before_next_message(self):
        history = conversation_to_llm_messages([
            _tool_call(1, "t1"),
            _msg(2, "user", "u1", "never mind"),
        ], AGENT)
        assert [m.role for m in history] == ["assistant", "tool", "user"]
        assert history[1].tool_call_id == "t1"
        assert history[1].content == PENDING_APPROVAL_RESULT

    def test_unanswered_call_at_end_is_closed(self):
        history = conversation_to_llm_messages([_tool_call(1, "t1", "t2"), _tool_result(2, "t1")], AGENT)
        assert [(m.role, m.tool_call_id) for m in history] == [
            ("assistant", None), ("tool", "t1"), ("tool", "t2"),
        ]

    def test_orphan_tool_result_dropped(self):
        history = conversation_to_llm_messages([
            _msg(1, "user", "u1", "hi"),
            _tool_result(2, "ghost"),
        ], AGENT)
        assert [m.role for m in history] == ["user"]

    def test_late_result_after_synthetic_close_is_dropped(self):
        history = conversation_to_llm_messages([
            _tool_call(1, "t1"),
            _msg(2, "user", "u1", "hello?"),
            _tool_result(3, "t1"),
        ], AGENT)
        tool_messages = [m for m in history if m.role == "tool"]
        assert len(tool_messages) == 1
        assert tool_messages[0].content == PENDING_APPROVAL_RESULT

    def test_other_agents_tool_calls_become_user_text(self):
        foreign = _msg(1, "agent", "other", "calling", "tool_call",
                       {"toolCalls": [{"id": "x", "name": "n", "arguments": {}}]})
        history = conversation_to_llm_messages([foreign], AGENT)
        assert history[0].role == "user"
        assert history[0].tool_calls == []

    def test_deterministic(self):
        stored = [_msg(1, "user", "u1", "hi"), _tool_call(2, "t1"), _tool_result(3, "t1")]
        assert conversation_to_llm_messages(stored, AGENT) == conversation_to_llm_messages(stored, AGENT)
