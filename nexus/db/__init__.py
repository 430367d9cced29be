"""Database module for Nexus agent state and persistence."""

from nexus.db.connection import (
    SessionLocal,
    engine,
    get_db,
    get_db_context,
    init_db,
)
from nexus.db.models import (
    ActionStatus,
    Agent,
    AgentActionLog,
    AgentPermission,
    AgentStatus,
    AgentTool,
    AIProviderKey,
    ContentType,
    Conversation,
    ConversationParticipant,
    ConversationStatus,
    Message,
    ParticipantType,
    SenderType,
)

__all__ = [
    # Models
    "Agent",
    "AgentTool",
    "AgentPermission",
    "AgentActionLog",
    "AIProviderKey",
    "Conversation",
    "ConversationParticipant",
    "Message",
    # Enums
    "ActionStatus",
    "AgentStatus",
    "ContentType",
    "ConversationStatus",
    "ParticipantType",
    "SenderType",
    # Connection
    "engine",
    "SessionLocal",
    "get_db",
    "get_db_context",
    "init_db",
]
