"""Conversation memory scoped to one session.

Holds the chronological record of successful turns plus the latest
MemoryContext the endpoint supplied. Both are persisted together under
``chatConversationMemory`` along with the owning session id, so memory
from an older session is never resumed.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from halochat.memory.models import MemoryContext, Message
from halochat.session import now_ms

if TYPE_CHECKING:
    from collections.abc import Callable

    from halochat.session import SessionStore
    from halochat.storage import KeyValueStore

logger = logging.getLogger(__name__)

MEMORY_STORAGE_KEY = "chatConversationMemory"


class ConversationMemoryStore:
    """Append-only turn history and derived context for the active session."""

    def __init__(
        self,
        storage: KeyValueStore,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._clock = clock
        self._session_id: str | None = None
        self._messages: list[Message] = []
        self._context = MemoryContext()

    def __len__(self) -> int:
        return len(self._messages)

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def context(self) -> MemoryContext:
        return self._context

    # -- Lifecycle ---------------------------------------------------------------

    def load(self, session_id: str) -> None:
        """Bind to *session_id*, restoring persisted memory if it belongs to it."""
        raw = self._storage.get(MEMORY_STORAGE_KEY)
        if not isinstance(raw, dict) or raw.get("session_id") != session_id:
            self.reset(session_id)
            return
        try:
            messages = [Message.model_validate(m) for m in raw.get("messages", [])]
            context = MemoryContext.model_validate(raw.get("context") or {})
        except (ValidationError, TypeError) as exc:
            logger.warning("Discarding corrupt conversation memory: %s", exc)
            self.reset(session_id)
            return
        if any(m.timestamp is None for m in messages):
            logger.warning("Discarding conversation memory with unstamped messages")
            self.reset(session_id)
            return
        self._session_id = session_id
        self._messages = messages
        self._context = context
        logger.info("Restored %d messages for %s", len(messages), session_id)

    def track(self, sessions: SessionStore) -> None:
        """Bind to the active session and reset whenever it is replaced."""
        self.load(sessions.current.id)
        sessions.add_expiry_listener(lambda session: self.reset(session.id))

    def reset(self, session_id: str | None = None) -> None:
        """Clear messages and context, optionally rebinding to *session_id*."""
        if session_id is not None:
            self._session_id = session_id
        cleared = len(self._messages)
        self._messages = []
        self._context = MemoryContext()
        self._save()
        if cleared:
            logger.info("Cleared %d messages from conversation memory", cleared)

    # -- Write -------------------------------------------------------------------

    def append(self, user_text: str, bot_text: str, timestamp: int | None = None) -> None:
        """Record one successful turn: the user message, then the bot reply."""
        ts = timestamp if timestamp is not None else now_ms(self._clock)
        if self._messages:
            # keep memory chronological even if the clock steps backwards
            ts = max(ts, self._messages[-1].timestamp or 0)
        self._messages.append(Message(role="user", text=user_text, timestamp=ts))
        self._messages.append(Message(role="bot", text=bot_text, timestamp=ts))
        self._save()

    def set_context(self, context: MemoryContext) -> None:
        """Replace the memory context wholesale."""
        self._context = context
        self._save()

    # -- Read --------------------------------------------------------------------

    def history_for_request(self) -> list[dict[str, Any]]:
        """Project memory into the ``conversation_history`` wire shape."""
        return [m.to_history_item() for m in self._messages]

    # -- Persistence -------------------------------------------------------------

    def _save(self) -> None:
        if self._session_id is None:
            return
        self._storage.set(
            MEMORY_STORAGE_KEY,
            {
                "session_id": self._session_id,
                "messages": [m.model_dump() for m in self._messages],
                "context": self._context.model_dump(),
            },
        )
