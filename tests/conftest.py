"""Root-level pytest fixtures for all tests.

Provides:
- In-memory SQLite sessions
- A vault master key and a seeded agent with a stored provider key
- An ExecutionContext wired to a recording emitter and fake services
"""

import os
from collections.abc import Callable, Generator
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from nexus.db.models import Agent, Base, Conversation
from nexus.orchestrator.agent.engine import ExecutionContext
from nexus.orchestrator.agent.tools.types import BusinessServices
from nexus.services.agent_service import AgentService
from nexus.services.conversation_persistence_service import ConversationPersistenceService
from nexus.services.provider_keys_service import ProviderKeyService
from tests.helpers import FakeAnalyticsService, FakeOrderService, RecordingEmitter

ORG_ID = "org-1"
USER_ID = "user-1"


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests requiring external services"
    )


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    """In-memory SQLite for testing."""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def master_key() -> bytes:
    return os.urandom(32)


@pytest.fixture
def org_id() -> str:
    return ORG_ID


@pytest.fixture
def emitter() -> RecordingEmitter:
    return RecordingEmitter()


@pytest.fixture
def orders() -> FakeOrderService:
    return FakeOrderService()


@pytest.fixture
def services(orders: FakeOrderService) -> BusinessServices:
    return BusinessServices(orders=orders, erp_analytics=FakeAnalyticsService())


@pytest.fixture
def make_agent(db_session: Session, master_key: bytes) -> Callable[..., Agent]:
    """Factory creating an agent, optionally storing a provider key for its org."""

    def _make(
        tool_keys: list[str] | None = None,
        permissions: list[str] | None = None,
        config: dict[str, Any] | None = None,
        status: str = "active",
        with_key: bool = True,
        org_id: str = ORG_ID,
    ) -> Agent:
        cfg = {"provider": "anthropic", "stream": False}
        cfg.update(config or {})
        agent = AgentService(db_session).create_agent(
            org_id=org_id,
            name="Ada",
            config=cfg,
            tool_keys=tool_keys or [],
            permissions=permissions or [],
            status=status,
        )
        if with_key:
            keys = ProviderKeyService(db_session, master_key)
            if not any(k["provider"] == cfg["provider"] for k in keys.list_keys(org_id)):
                keys.add_key(org_id, cfg["provider"], "sk-test-1234567890", "default")
        return agent

    return _make


@pytest.fixture
def make_conversation(db_session: Session) -> Callable[..., Conversation]:
    def _make(agent: Agent | None = None, org_id: str = ORG_ID) -> Conversation:
        return ConversationPersistenceService(db_session).create_conversation(
            org_id=org_id,
            title="Test",
            created_by=USER_ID,
            user_ids=[USER_ID],
            agent_ids=[agent.id] if agent else [],
        )

    return _make


@pytest.fixture
def ctx(
    db_session: Session,
    emitter: RecordingEmitter,
    services: BusinessServices,
    master_key: bytes,
) -> ExecutionContext:
    return ExecutionContext(
        db=db_session,
        emit=emitter,
        org_id=ORG_ID,
        services=services,
        master_key=master_key,
        user_id=USER_ID,
    )
