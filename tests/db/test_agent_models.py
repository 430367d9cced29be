"""Tests for the agent subsystem ORM models."""

import json

from nexus.db.models import (
    ActionStatus,
    Agent,
    AgentActionLog,
    ConversationStatus,
    Message,
)


class TestAgentConfig:
    def test_config_round_trips_json(self, db_session):
        agent = Agent(org_id="org-1", name="Ada")
        agent.config = {"provider": "openai", "requireApproval": False}
        db_session.add(agent)
        db_session.commit()

        loaded = db_session.get(Agent, agent.id)
        assert loaded.config == {"provider": "openai", "requireApproval": False}
        assert loaded.status == "active"

    def test_missing_or_corrupt_config_is_empty(self):
        assert Agent(org_id="o", name="a").config == {}
        assert Agent(org_id="o", name="a", config_json="{not json").config == {}


class TestMessage:
    def test_to_dict_uses_camel_case(self, db_session, make_conversation):
        conv = make_conversation()
        msg = Message(
            org_id="org-1",
            conversation_id=conv.id,
            sender_type="agent",
            sender_id="ag-1",
            content="hi",
            content_type="tool_call",
            metadata_json=json.dumps({"toolCalls": []}),
            sequence=1,
        )
        db_session.add(msg)
        db_session.commit()

        data = msg.to_dict()
        assert data["conversationId"] == conv.id
        assert data["senderType"] == "agent"
        assert data["contentType"] == "tool_call"
        assert data["metadata"] == {"toolCalls": []}
        assert data["sequence"] == 1

    def test_meta_defaults_to_empty(self):
        assert Message(content="x").meta == {}

    def test_conversation_defaults(self, make_conversation):
        conv = make_conversation()
        assert conv.status == ConversationStatus.open.value
        assert len(conv.participants) == 1


class TestActionLog:
    def test_input_and_output_properties(self):
        row = AgentActionLog(
            org_id="o",
            agent_id="a",
            action="create_order",
            input_json=json.dumps({"clientId": "c1"}),
            output_json=None,
            status=ActionStatus.pending_approval.value,
        )
        assert row.input == {"clientId": "c1"}
        assert row.output is None
