"""Tests for approving and rejecting pending agent actions."""

import json

import pytest

from nexus.errors import ApprovalConflictError, NotFoundError
from nexus.orchestrator.agent.approval import ApprovalHandler
from nexus.orchestrator.agent.config import EngineSettings
from nexus.orchestrator.agent.engine import ExecutionContext, TurnEngine, TurnOutcome
from nexus.orchestrator.agent.llm.types import ToolCall
from nexus.orchestrator.agent.tools import BusinessServices, build_default_registry
from nexus.services.action_log_service import ActionLogService
from nexus.services.conversation_persistence_service import ConversationPersistenceService
from tests.helpers import FakeOrderService, ScriptedLLMClient, text_response, tool_response

ORDER_ARGS = {"type": "sales", "clientId": "c1", "orderDate": "2024-05-01", "items": []}


@pytest.fixture
def llm() -> ScriptedLLMClient:
    return ScriptedLLMClient()


@pytest.fixture
def engine(llm) -> TurnEngine:
    return TurnEngine(
        build_default_registry(),
        EngineSettings(max_tool_iterations=5),
        client_factory=lambda provider, key: llm,
    )


@pytest.fixture
def handler(engine) -> ApprovalHandler:
    return ApprovalHandler(engine)


@pytest.fixture
def suspend(engine, llm, ctx, db_session, make_agent, make_conversation):
    """Run a turn that stops on a create_order approval request."""

    async def _suspend(config=None):
        agent = make_agent(
            tool_keys=["erp_create_order"],
            permissions=["erp:orders:create"],
            config=config,
        )
        conv = make_conversation(agent)
        ConversationPersistenceService(db_session).append_message(
            "org-1", conv.id, "user", "user-1", "Create an order for c1"
        )
        llm.script(tool_response(ToolCall("toolu_1", "create_order", ORDER_ARGS)))
        result = await engine.run_turn(ctx, agent, conv.id)
        assert result.outcome == TurnOutcome.awaiting_approval
        return agent, conv, result.pending_action_id

    return _suspend


def _messages(db_session, conv):
    return ConversationPersistenceService(db_session).list_messages("org-1", conv.id)


class TestApprove:
    @pytest.mark.asyncio
    async def test_executes_records_and_resumes(
        self, handler, suspend, llm, ctx, orders, emitter, db_session
    ):
        agent, conv, action_id = await suspend()
        llm.script(text_response("Order ord-1 was created as a draft."))

        outcome = await handler.approve(ctx, action_id)

        assert orders.created == [("org-1", ORDER_ARGS)]
        assert outcome.action.status == "success"
        assert outcome.action.approved_by == "user-1"
        assert outcome.action.output["id"] == "ord-1"
        assert outcome.turn is not None
        assert outcome.turn.outcome == TurnOutcome.completed

        msgs = _messages(db_session, conv)
        assert [(m.sender_type, m.content_type) for m in msgs] == [
            ("user", "text"),
            ("agent", "tool_call"),
            ("agent", "action_request"),
            ("agent", "tool_result"),
            ("agent", "action_result"),
            ("system", "text"),
            ("agent", "text"),
        ]
        tool_result = msgs[3]
        assert tool_result.meta["toolCallId"] == "toolu_1"
        assert tool_result.meta["actionId"] == action_id
        assert json.loads(tool_result.content)["id"] == "ord-1"
        assert msgs[4].id == outcome.message_id
        assert msgs[4].content.startswith("Action approved and executed: **create_order**")
        assert msgs[4].meta["result"]["id"] == "ord-1"
        assert msgs[-1].content == "Order ord-1 was created as a draft."

        resumed = llm.requests[1].messages
        assert [m.role for m in resumed] == [
            "system", "user", "assistant", "tool", "assistant", "user",
        ]
        assert resumed[3].tool_call_id == "toolu_1"
        assert resumed[-1].content.startswith('The action "create_order" was approved')

        statuses = [e.payload["status"] for e in emitter.named("tool-execution")]
        assert statuses == ["pending_approval", "completed"]

    @pytest.mark.asyncio
    async def test_second_resolution_conflicts(self, handler, suspend, llm, ctx, orders):
        _, _, action_id = await suspend()
        llm.script(text_response("Done."))
        await handler.approve(ctx, action_id)

        with pytest.raises(ApprovalConflictError):
            await handler.approve(ctx, action_id)
        with pytest.raises(ApprovalConflictError):
            await handler.reject(ctx, action_id)
        assert len(orders.created) == 1

    @pytest.mark.asyncio
    async def test_failed_execution_is_reported_without_resume(
        self, handler, suspend, llm, emitter, db_session, master_key
    ):
        agent, conv, action_id = await suspend()
        failing = FakeOrderService(fail_with="credit limit exceeded")
        ctx = ExecutionContext(
            db=db_session,
            emit=emitter,
            org_id="org-1",
            services=BusinessServices(orders=failing),
            master_key=master_key,
            user_id="user-2",
        )

        outcome = await handler.approve(ctx, action_id)

        assert outcome.turn is None
        assert outcome.action.status == "failed"
        assert outcome.action.output == {"error": "credit limit exceeded"}
        assert len(llm.requests) == 1

        msgs = _messages(db_session, conv)
        assert msgs[-2].content_type == "tool_result"
        assert msgs[-2].meta["isError"] is True
        assert msgs[-1].content_type == "action_result"
        assert msgs[-1].meta["error"] == "credit limit exceeded"
        assert "failed to execute" in msgs[-1].content

    @pytest.mark.asyncio
    async def test_summary_disabled_skips_resume(self, handler, suspend, llm, ctx, db_session):
        _, conv, action_id = await suspend(config={"summarizeApprovedResults": False})

        outcome = await handler.approve(ctx, action_id)

        assert outcome.turn is None
        assert len(llm.requests) == 1
        assert _messages(db_session, conv)[-1].content_type == "action_result"

    @pytest.mark.asyncio
    async def test_paused_agent_is_not_resumed(self, handler, suspend, llm, ctx, db_session):
        agent, conv, action_id = await suspend()
        agent.status = "paused"
        db_session.commit()

        outcome = await handler.approve(ctx, action_id)

        assert outcome.action.status == "success"
        assert outcome.turn is None
        assert len(llm.requests) == 1

    @pytest.mark.asyncio
    async def test_unsupported_provider_on_resume_becomes_message(
        self, handler, suspend, llm, ctx, orders, db_session
    ):
        agent, conv, action_id = await suspend()
        agent.config = {**agent.config, "provider": "mistral"}
        db_session.commit()

        outcome = await handler.approve(ctx, action_id)

        assert outcome.turn is None
        assert outcome.action.status == "success"
        assert len(orders.created) == 1
        assert len(llm.requests) == 1
        last = _messages(db_session, conv)[-1]
        assert last.sender_id == agent.id
        assert last.content.startswith("I encountered an error: ")
        assert "mistral" in last.content

    @pytest.mark.asyncio
    async def test_row_is_executing_while_tool_runs(
        self, handler, suspend, llm, emitter, db_session, master_key
    ):
        _, _, action_id = await suspend()
        statuses: list[str] = []

        class WatchingOrders(FakeOrderService):
            def create_order(self, org_id, data):
                db_session.expire_all()
                statuses.append(ActionLogService(db_session).get(org_id, action_id).status)
                return super().create_order(org_id, data)

        ctx = ExecutionContext(
            db=db_session,
            emit=emitter,
            org_id="org-1",
            services=BusinessServices(orders=WatchingOrders()),
            master_key=master_key,
            user_id="user-1",
        )
        llm.script(text_response("Created."))

        outcome = await handler.approve(ctx, action_id)

        assert statuses == ["executing"]
        assert outcome.action.status == "success"
        assert ActionLogService(db_session).list_pending("org-1") == []

    @pytest.mark.asyncio
    async def test_unknown_action(self, handler, ctx):
        with pytest.raises(NotFoundError):
            await handler.approve(ctx, "missing")

    @pytest.mark.asyncio
    async def test_other_org_cannot_approve(
        self, handler, suspend, emitter, db_session, master_key
    ):
        _, _, action_id = await suspend()
        other = ExecutionContext(
            db=db_session, emit=emitter, org_id="org-2", master_key=master_key
        )

        with pytest.raises(NotFoundError):
            await handler.approve(other, action_id)
        assert ActionLogService(db_session).get("org-1", action_id).status == "pending_approval"


class TestReject:
    @pytest.mark.asyncio
    async def test_reject_records_reason_and_never_executes(
        self, handler, suspend, llm, ctx, orders, emitter, db_session
    ):
        _, conv, action_id = await suspend()

        outcome = await handler.reject(ctx, action_id, reason="wrong client")

        assert orders.created == []
        assert outcome.turn is None
        assert len(llm.requests) == 1
        assert outcome.action.status == "failed"
        assert outcome.action.output == {"rejected": True, "reason": "wrong client"}
        assert outcome.action.approved_by == "user-1"

        msgs = _messages(db_session, conv)
        tool_result, action_result = msgs[-2], msgs[-1]
        assert tool_result.meta["toolCallId"] == "toolu_1"
        assert json.loads(tool_result.content)["status"] == "rejected"
        assert action_result.content == (
            'Action "create_order" was rejected: wrong client. '
            "Let me know if you'd like to do something else."
        )
        assert action_result.meta == {"actionId": action_id, "rejected": True, "reason": "wrong client"}
        assert emitter.named("tool-execution")[-1].payload["status"] == "rejected"

    @pytest.mark.asyncio
    async def test_reject_without_reason(self, handler, suspend, ctx, db_session):
        _, conv, action_id = await suspend()

        await handler.reject(ctx, action_id)

        assert _messages(db_session, conv)[-1].content.startswith('Action "create_order" was rejected. ')

    @pytest.mark.asyncio
    async def test_next_turn_sees_rejection(
        self, handler, suspend, engine, llm, ctx, db_session
    ):
        agent, conv, action_id = await suspend()
        await handler.reject(ctx, action_id, reason="not now")
        ConversationPersistenceService(db_session).append_message(
            "org-1", conv.id, "user", "user-1", "ok, list nothing then"
        )
        llm.script(text_response("Understood."))

        await engine.run_turn(ctx, agent, conv.id)

        history = llm.requests[-1].messages
        tool_msg = next(m for m in history if m.role == "tool")
        assert json.loads(tool_msg.content)["reason"] == "not now"

    @pytest.mark.asyncio
    async def test_reject_twice_leaves_first_resolution(
        self, handler, suspend, ctx, db_session
    ):
        _, conv, action_id = await suspend()
        await handler.reject(ctx, action_id, reason="first", rejected_by="admin-1")
        count = len(_messages(db_session, conv))

        with pytest.raises(ApprovalConflictError):
            await handler.reject(ctx, action_id, reason="second")

        row = ActionLogService(db_session).get("org-1", action_id)
        assert row.output == {"rejected": True, "reason": "first"}
        assert row.approved_by == "admin-1"
        assert len(_messages(db_session, conv)) == count
