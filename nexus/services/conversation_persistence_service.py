"""Persistence service for conversations and their message log.

All conversation history reads and writes go through this service. Messages
are append-only; the per-conversation sequence number is the only ordering
the engine trusts when it rebuilds model context.
"""

import json
import logging
from typing import Any

from sqlalchemy.orm import Session

from nexus.db.models import (
    ContentType,
    Conversation,
    ConversationParticipant,
    ConversationStatus,
    Message,
    ParticipantType,
    utc_now_iso,
)
from nexus.errors import NotFoundError

logger = logging.getLogger(__name__)


class ConversationPersistenceService:
    """CRUD operations for conversations, participants and messages.

    Args:
        db: SQLAlchemy session (sync).
    """

    def __init__(self, db: Session) -> None:
        self._db = db

    def create_conversation(
        self,
        org_id: str,
        title: str | None = None,
        created_by: str | None = None,
        user_ids: list[str] | None = None,
        agent_ids: list[str] | None = None,
    ) -> Conversation:
        """Create a conversation with its initial participants."""
        conversation = Conversation(org_id=org_id, title=title, created_by=created_by)
        for user_id in user_ids or []:
            conversation.participants.append(
                ConversationParticipant(
                    participant_type=ParticipantType.user.value,
                    participant_id=user_id,
                )
            )
        for agent_id in agent_ids or []:
            conversation.participants.append(
                ConversationParticipant(
                    participant_type=ParticipantType.agent.value,
                    participant_id=agent_id,
                )
            )
        self._db.add(conversation)
        self._db.commit()
        return conversation

    def get_conversation(self, org_id: str, conversation_id: str) -> Conversation:
        """Load a conversation scoped to an organization.

        Raises:
            NotFoundError: If it does not exist in this org.
        """
        conversation = (
            self._db.query(Conversation)
            .filter_by(id=conversation_id, org_id=org_id)
            .first()
        )
        if conversation is None:
            raise NotFoundError("Conversation", conversation_id)
        return conversation

    def add_participant(
        self, conversation_id: str, participant_type: str, participant_id: str
    ) -> ConversationParticipant:
        participant = ConversationParticipant(
            conversation_id=conversation_id,
            participant_type=participant_type,
            participant_id=participant_id,
        )
        self._db.add(participant)
        self._db.commit()
        return participant

    def agent_participant_ids(self, conversation_id: str) -> list[str]:
        """Agent ids taking part in a conversation, in join order."""
        rows = (
            self._db.query(ConversationParticipant.participant_id)
            .filter_by(
                conversation_id=conversation_id,
                participant_type=ParticipantType.agent.value,
            )
            .order_by(ConversationParticipant.joined_at, ConversationParticipant.id)
            .all()
        )
        return [r[0] for r in rows]

    def append_message(
        self,
        org_id: str,
        conversation_id: str,
        sender_type: str,
        sender_id: str,
        content: str,
        content_type: str = ContentType.text.value,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        """Append a message with the next sequence number.

        Also bumps the conversation's last_message_at/updated_at and reopens
        a resolved conversation.

        Args:
            org_id: Owning organization.
            conversation_id: Parent conversation.
            sender_type: 'user', 'agent', or 'system'.
            sender_id: Author id.
            content: Message text.
            content_type: Classification (default 'text').
            metadata: Optional tool-call/approval metadata.

        Returns:
            The committed Message.

        Raises:
            NotFoundError: If the conversation does not exist in this org.
        """
        conversation = self.get_conversation(org_id, conversation_id)

        # Single-writer per conversation is guaranteed by ConversationTurnLocks;
        # the unique (conversation_id, sequence) constraint catches anything else.
        max_seq = (
            self._db.query(Message.sequence)
            .filter_by(conversation_id=conversation_id)
            .order_by(Message.sequence.desc())
            .first()
        )
        next_seq = (max_seq[0] + 1) if max_seq else 1

        now = utc_now_iso()
        msg = Message(
            org_id=org_id,
            conversation_id=conversation_id,
            sender_type=sender_type,
            sender_id=sender_id,
            content=content,
            content_type=content_type,
            metadata_json=json.dumps(metadata, default=str) if metadata else None,
            sequence=next_seq,
            created_at=now,
        )
        self._db.add(msg)

        conversation.last_message_at = now
        conversation.updated_at = now
        if conversation.status == ConversationStatus.resolved.value:
            conversation.status = ConversationStatus.open.value
            logger.info("Reopened resolved conversation %s", conversation_id)

        self._db.commit()
        return msg

    def list_messages(self, org_id: str, conversation_id: str) -> list[Message]:
        """All messages of a conversation in sequence order."""
        return (
            self._db.query(Message)
            .filter_by(conversation_id=conversation_id, org_id=org_id)
            .order_by(Message.sequence)
            .all()
        )

    def get_message(self, org_id: str, message_id: str) -> Message | None:
        return (
            self._db.query(Message)
            .filter_by(id=message_id, org_id=org_id)
            .first()
        )

    def set_status(self, org_id: str, conversation_id: str, status: str) -> Conversation:
        """Set open/resolved/archived."""
        valid = {s.value for s in ConversationStatus}
        if status not in valid:
            raise ValueError(f"Invalid conversation status {status!r}")
        conversation = self.get_conversation(org_id, conversation_id)
        conversation.status = status
        conversation.updated_at = utc_now_iso()
        self._db.commit()
        return conversation
