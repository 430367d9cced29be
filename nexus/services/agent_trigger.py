"""Starts an agent turn when a user posts into a conversation with an agent.

The host calls trigger_agent_for_conversation after persisting a user
message (or schedule_agent_turn to run it in the background without
blocking the request).
"""

import asyncio
import logging
from collections.abc import Callable

from sqlalchemy.orm import Session

from nexus.db.connection import SessionLocal
from nexus.db.models import Message, SenderType
from nexus.errors import CredentialError, UnsupportedProviderError
from nexus.orchestrator.agent.engine import (
    NO_API_KEY_MESSAGE,
    EmitFn,
    ExecutionContext,
    TurnEngine,
    TurnResult,
    error_message,
    persist_and_emit,
)
from nexus.orchestrator.agent.tools.types import BusinessServices
from nexus.services.agent_service import AgentService
from nexus.services.conversation_persistence_service import ConversationPersistenceService

logger = logging.getLogger(__name__)


async def trigger_agent_for_conversation(
    engine: TurnEngine,
    ctx: ExecutionContext,
    conversation_id: str,
    message: Message,
) -> TurnResult | None:
    """Run the conversation's agent in response to a new message.

    Only user-authored messages trigger a turn, so agents never answer
    themselves or each other. The first agent participant responds, and
    only while it is active.

    Args:
        engine: Turn engine.
        ctx: Execution context for the message's org.
        conversation_id: Conversation the message was posted to.
        message: The persisted message.

    Returns:
        The turn result, or None when no turn ran.
    """
    if message.sender_type != SenderType.user.value:
        return None

    agent_ids = ConversationPersistenceService(ctx.db).agent_participant_ids(conversation_id)
    if not agent_ids:
        return None

    agent = AgentService(ctx.db).find_active_agent(ctx.org_id, agent_ids[0])
    if agent is None:
        logger.info(
            "Agent %s in conversation %s is not active; skipping turn",
            agent_ids[0], conversation_id,
        )
        return None

    try:
        return await engine.run_turn(ctx, agent, conversation_id)
    except CredentialError as e:
        logger.warning("Agent %s has no usable %s key: %s", agent.id, e.provider, e)
        await persist_and_emit(
            ctx, conversation_id, SenderType.agent.value, agent.id, NO_API_KEY_MESSAGE
        )
    except UnsupportedProviderError as e:
        logger.warning("Agent %s is configured with an unsupported provider: %s", agent.id, e)
        await persist_and_emit(
            ctx, conversation_id, SenderType.agent.value, agent.id, error_message(str(e))
        )
    return None


async def _run_in_background(
    engine: TurnEngine,
    org_id: str,
    conversation_id: str,
    message_id: str,
    emit: EmitFn,
    services: BusinessServices,
    user_id: str | None,
    session_factory: Callable[[], Session],
) -> None:
    """Wrapper that opens its own session and logs any failure."""
    db = session_factory()
    try:
        message = ConversationPersistenceService(db).get_message(org_id, message_id)
        if message is None:
            logger.warning("Message %s vanished before the agent turn started", message_id)
            return
        ctx = ExecutionContext(
            db=db, emit=emit, org_id=org_id, services=services, user_id=user_id
        )
        await trigger_agent_for_conversation(engine, ctx, conversation_id, message)
    except Exception as e:
        logger.exception(
            "Background agent turn failed for conversation %s: %s", conversation_id, e
        )
    finally:
        db.close()


def schedule_agent_turn(
    engine: TurnEngine,
    org_id: str,
    conversation_id: str,
    message_id: str,
    emit: EmitFn,
    services: BusinessServices | None = None,
    user_id: str | None = None,
    session_factory: Callable[[], Session] = SessionLocal,
) -> asyncio.Task[None]:
    """Fire-and-forget variant of trigger_agent_for_conversation.

    The request that persisted the message returns immediately; the turn
    runs on the event loop with its own database session.

    Returns:
        The scheduled task (callers may ignore it).
    """
    return asyncio.create_task(
        _run_in_background(
            engine,
            org_id,
            conversation_id,
            message_id,
            emit,
            services or BusinessServices(),
            user_id,
            session_factory,
        )
    )
