"""Per-conversation turn locks.

At most one turn (including an approval resume) runs against a conversation
at a time, so message sequence numbers and tool-call ordering cannot
interleave. Locks are reference-counted and dropped when no turn holds or
waits on them.

Single-process only: the locks live in the event loop that created them.

Example:
    locks = ConversationTurnLocks(mode="queue")
    async with locks.hold("conv-123"):
        ...  # run the turn
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from nexus.errors import TurnInProgressError

logger = logging.getLogger(__name__)


class _ConversationLock:
    """A lock plus the number of turns holding or waiting for it."""

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.refs = 0


class ConversationTurnLocks:
    """Registry of asyncio locks keyed by conversation id.

    Attributes:
        mode: 'queue' waits for the running turn; 'reject' raises
            TurnInProgressError immediately.
    """

    def __init__(self, mode: str = "queue") -> None:
        if mode not in ("queue", "reject"):
            raise ValueError(f"Invalid turn concurrency mode {mode!r}")
        self.mode = mode
        self._locks: dict[str, _ConversationLock] = {}

    def is_busy(self, conversation_id: str) -> bool:
        entry = self._locks.get(conversation_id)
        return entry is not None and entry.lock.locked()

    def active_conversations(self) -> list[str]:
        return [cid for cid, entry in self._locks.items() if entry.lock.locked()]

    @asynccontextmanager
    async def hold(self, conversation_id: str) -> AsyncIterator[None]:
        """Hold the conversation's lock for the duration of the block.

        Raises:
            TurnInProgressError: In reject mode, when a turn is already running.
        """
        entry = self._locks.get(conversation_id)
        if entry is None:
            entry = self._locks[conversation_id] = _ConversationLock()

        if self.mode == "reject" and entry.lock.locked():
            raise TurnInProgressError(conversation_id)

        entry.refs += 1
        try:
            if entry.lock.locked():
                logger.debug("Waiting for running turn in conversation %s", conversation_id)
            async with entry.lock:
                yield
        finally:
            entry.refs -= 1
            if entry.refs == 0:
                self._locks.pop(conversation_id, None)
