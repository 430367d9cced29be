"""Service layer for the Nexus agent subsystem.

Provides conversation persistence, agent lookups, the action log, provider
key storage and per-conversation turn locks. The agent trigger lives in
nexus.services.agent_trigger and is not re-exported here because it
depends on the turn engine.
"""

from nexus.services.action_log_service import ActionLogService
from nexus.services.agent_service import AgentService
from nexus.services.conversation_locks import ConversationTurnLocks
from nexus.services.conversation_persistence_service import ConversationPersistenceService
from nexus.services.provider_keys_service import ProviderKeyService

__all__ = [
    "ActionLogService",
    "AgentService",
    "ConversationPersistenceService",
    "ConversationTurnLocks",
    "ProviderKeyService",
]
