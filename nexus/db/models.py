"""SQLAlchemy ORM models for the Nexus agent subsystem.

This module defines the data models the agent turn engine reads and writes:
agents and their tool bindings/permissions, conversations and their
append-only message log, the agent action log that backs the approval
workflow, and encrypted AI provider keys. Uses SQLAlchemy 2.0 style with
Mapped and mapped_column.

JSON payloads are stored in TEXT columns and parsed through the helper
properties on each model, so the schema stays portable between SQLite and
PostgreSQL.
"""

import json
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


def generate_uuid() -> str:
    """Generate a UUID4 string for primary keys."""
    return str(uuid4())


def utc_now_iso() -> str:
    """Generate current UTC timestamp in ISO8601 format."""
    return datetime.now(UTC).isoformat()


def _load_json(raw: str | None, default: Any) -> Any:
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return default


def _dump_json(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value, default=str)


# Enums matching the database schema constraints


class AgentStatus(str, Enum):
    """Lifecycle status of an agent. Only active agents take turns."""

    active = "active"
    paused = "paused"
    disabled = "disabled"


class ConversationStatus(str, Enum):
    """Status values for conversations.

    Lifecycle: open -> resolved -> archived
               resolved -> open (when a new message arrives)
    """

    open = "open"
    resolved = "resolved"
    archived = "archived"


class SenderType(str, Enum):
    """Who authored a message."""

    user = "user"
    agent = "agent"
    system = "system"


class ContentType(str, Enum):
    """Classification of message content.

    tool_call and tool_result make up the model-facing tool history;
    action_request and action_result are the approval workflow's
    user-facing records.
    """

    text = "text"
    tool_call = "tool_call"
    tool_result = "tool_result"
    action_request = "action_request"
    action_result = "action_result"


class ActionStatus(str, Enum):
    """Status values for agent action log rows.

    Lifecycle: pending_approval -> executing -> success/failed (approved)
               pending_approval -> failed (rejected)
               (non-destructive calls are created directly as success/failed)

    An executing row left behind means the process stopped while an
    approved tool was running; its outcome is unknown.
    """

    success = "success"
    failed = "failed"
    pending_approval = "pending_approval"
    executing = "executing"


class ParticipantType(str, Enum):
    """Kinds of conversation participants."""

    user = "user"
    agent = "agent"


# SQLAlchemy Base


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Models


class Agent(Base):
    """Configured AI persona bound to a provider/model and a set of tools.

    Attributes:
        id: UUID primary key.
        org_id: Owning organization.
        name: Display name, also used in the system prompt.
        description: Optional description for admins.
        status: active, paused, or disabled.
        config_json: JSON blob with systemPrompt, provider, model and the
            approval flags parsed by AgentRuntimeConfig.
        created_at: ISO8601 creation timestamp.
        updated_at: ISO8601 last-update timestamp.
    """

    __tablename__ = "agents"
    __table_args__ = (Index("ix_agents_org", "org_id"),)

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    org_id: Mapped[str] = mapped_column(String(36), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AgentStatus.active.value
    )
    config_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    tools: Mapped[list["AgentTool"]] = relationship(
        "AgentTool", back_populates="agent", cascade="all, delete-orphan"
    )
    permissions: Mapped[list["AgentPermission"]] = relationship(
        "AgentPermission", back_populates="agent", cascade="all, delete-orphan"
    )

    @property
    def config(self) -> dict[str, Any]:
        """Parse the config JSON blob into a dict."""
        return _load_json(self.config_json, {})

    @config.setter
    def config(self, value: dict[str, Any] | None) -> None:
        self.config_json = _dump_json(value)

    def __repr__(self) -> str:
        return f"<Agent(id={self.id!r}, name={self.name!r}, status={self.status!r})>"


class AgentTool(Base):
    """Binding of an agent to one tool registry key."""

    __tablename__ = "agent_tools"
    __table_args__ = (
        UniqueConstraint("agent_id", "tool_key", name="uq_agent_tools_agent_key"),
        Index("ix_agent_tools_agent", "agent_id"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    agent_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("agents.id", ondelete="CASCADE"), nullable=False
    )
    tool_key: Mapped[str] = mapped_column(String(100), nullable=False)

    agent: Mapped["Agent"] = relationship("Agent", back_populates="tools")


class AgentPermission(Base):
    """One permission string granted to an agent (e.g. 'crm:contacts:read')."""

    __tablename__ = "agent_permissions"
    __table_args__ = (
        UniqueConstraint(
            "agent_id", "permission", name="uq_agent_permissions_agent_perm"
        ),
        Index("ix_agent_permissions_agent", "agent_id"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    agent_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("agents.id", ondelete="CASCADE"), nullable=False
    )
    permission: Mapped[str] = mapped_column(String(100), nullable=False)

    agent: Mapped["Agent"] = relationship("Agent", back_populates="permissions")


class Conversation(Base):
    """Conversation between users and (optionally) an agent.

    Attributes:
        id: UUID primary key.
        org_id: Owning organization.
        title: Optional title.
        status: open, resolved, or archived.
        created_by: User who opened the conversation.
        last_message_at: ISO8601 timestamp of the newest message.
        created_at: ISO8601 creation timestamp.
        updated_at: ISO8601 last-update timestamp.
    """

    __tablename__ = "conversations"
    __table_args__ = (
        Index("ix_conversations_org_last", "org_id", "last_message_at"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    org_id: Mapped[str] = mapped_column(String(36), nullable=False)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ConversationStatus.open.value
    )
    created_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    last_message_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    messages: Mapped[list["Message"]] = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.sequence",
    )
    participants: Mapped[list["ConversationParticipant"]] = relationship(
        "ConversationParticipant",
        back_populates="conversation",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Conversation(id={self.id!r}, status={self.status!r})>"


class ConversationParticipant(Base):
    """A user or agent taking part in a conversation."""

    __tablename__ = "conversation_participants"
    __table_args__ = (Index("ix_conv_participants_conv", "conversation_id"),)

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    conversation_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    participant_type: Mapped[str] = mapped_column(String(10), nullable=False)
    participant_id: Mapped[str] = mapped_column(String(36), nullable=False)
    joined_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    conversation: Mapped["Conversation"] = relationship(
        "Conversation", back_populates="participants"
    )


class Message(Base):
    """Immutable conversation message.

    The ordered message log is the only record of conversation history;
    the engine rebuilds model context from it on every turn.

    Attributes:
        id: UUID primary key.
        org_id: Owning organization.
        conversation_id: FK to Conversation.
        sender_type: user, agent, or system.
        sender_id: Id of the user/agent (system messages use the agent id
            of the turn they belong to).
        content: Message text.
        content_type: text, tool_call, tool_result, action_request, action_result.
        metadata_json: Tool call ids, tool names, arguments and results.
        sequence: Ordering within conversation (monotonically increasing).
        created_at: ISO8601 creation timestamp.
    """

    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("conversation_id", "sequence", name="uq_messages_conv_seq"),
        Index("ix_messages_conv_seq", "conversation_id", "sequence"),
        Index("ix_messages_org", "org_id"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    org_id: Mapped[str] = mapped_column(String(36), nullable=False)
    conversation_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    sender_type: Mapped[str] = mapped_column(String(10), nullable=False)
    sender_id: Mapped[str] = mapped_column(String(36), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ContentType.text.value
    )
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    conversation: Mapped["Conversation"] = relationship(
        "Conversation", back_populates="messages"
    )

    @property
    def meta(self) -> dict[str, Any]:
        """Parse metadata JSON into a dict (empty when absent or corrupt)."""
        return _load_json(self.metadata_json, {})

    def to_dict(self) -> dict[str, Any]:
        """Serialize for real-time emission."""
        return {
            "id": self.id,
            "orgId": self.org_id,
            "conversationId": self.conversation_id,
            "senderType": self.sender_type,
            "senderId": self.sender_id,
            "content": self.content,
            "contentType": self.content_type,
            "metadata": self.meta or None,
            "sequence": self.sequence,
            "createdAt": self.created_at,
        }

    def __repr__(self) -> str:
        return (
            f"<Message(id={self.id!r}, seq={self.sequence!r}, "
            f"type={self.content_type!r})>"
        )


class AgentActionLog(Base):
    """One attempted tool invocation and its outcome.

    A pending_approval row is the durable handle the approval handler uses
    to resume a suspended turn, possibly after a process restart.

    Attributes:
        id: UUID primary key.
        org_id: Owning organization.
        agent_id: Agent that requested the call.
        conversation_id: Conversation the call belongs to.
        tool_key: Storage-facing tool registry key.
        action: Model-facing tool name.
        tool_call_id: Vendor correlation id shared with the related messages.
        input_json: Tool arguments.
        output_json: Tool result or error once resolved.
        status: success, failed, pending_approval, or executing.
        approved_by: User who approved or rejected the call.
        created_at: ISO8601 creation timestamp.
        resolved_at: ISO8601 timestamp of approval/rejection.
    """

    __tablename__ = "agent_actions_log"
    __table_args__ = (
        Index("ix_agent_actions_org", "org_id"),
        Index("ix_agent_actions_conv_status", "conversation_id", "status"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    org_id: Mapped[str] = mapped_column(String(36), nullable=False)
    agent_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("agents.id", ondelete="CASCADE"), nullable=False
    )
    conversation_id: Mapped[str | None] = mapped_column(
        String(36),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=True,
    )
    tool_key: Mapped[str | None] = mapped_column(String(100), nullable=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False)
    tool_call_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    input_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    output_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ActionStatus.success.value
    )
    approved_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    resolved_at: Mapped[str | None] = mapped_column(String(50), nullable=True)

    @property
    def input(self) -> dict[str, Any]:
        """Parse the input JSON (tool arguments)."""
        return _load_json(self.input_json, {})

    @property
    def output(self) -> Any:
        """Parse the output JSON (tool result or error payload)."""
        return _load_json(self.output_json, None)

    def __repr__(self) -> str:
        return (
            f"<AgentActionLog(id={self.id!r}, action={self.action!r}, "
            f"status={self.status!r})>"
        )


class AIProviderKey(Base):
    """Encrypted AI provider API key scoped to an organization.

    Attributes:
        id: UUID primary key.
        org_id: Owning organization.
        provider: anthropic, openai, or google.
        encrypted_key: Hex AES-256-GCM ciphertext with the auth tag appended.
        iv: Hex 96-bit initialization vector.
        label: Admin-facing label, unique per (org, provider).
        is_active: Only active keys are used by the engine.
    """

    __tablename__ = "ai_provider_keys"
    __table_args__ = (
        UniqueConstraint(
            "org_id", "provider", "label", name="uq_ai_provider_keys_org_provider_label"
        ),
        Index("ix_ai_provider_keys_org", "org_id"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    org_id: Mapped[str] = mapped_column(String(36), nullable=False)
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    encrypted_key: Mapped[str] = mapped_column(Text, nullable=False)
    iv: Mapped[str] = mapped_column(String(32), nullable=False)
    label: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    def __repr__(self) -> str:
        return f"<AIProviderKey(provider={self.provider!r}, label={self.label!r})>"
