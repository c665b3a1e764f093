"""Conversation state machine observed by the presentation layer.

States are ``idle`` and ``sending``. A submit while ``sending`` is rejected:
the caller keeps its input and may resubmit once the pending turn settles.
Failed turns show an error bubble in the display transcript but never reach
conversation memory.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Literal

if TYPE_CHECKING:
    from collections.abc import Callable

    from halochat.dispatcher import TurnDispatcher, TurnResult
    from halochat.memory.store import ConversationMemoryStore
    from halochat.session import Session, SessionStore

logger = logging.getLogger(__name__)


class ChatState(StrEnum):
    IDLE = "idle"
    SENDING = "sending"


@dataclass(frozen=True)
class UIMessage:
    """A display-only transcript entry."""

    role: Literal["user", "bot"]
    text: str


class Conversation:
    """Drives one chat: input buffer, display transcript, and turn lifecycle.

    Registers itself with *sessions* so that a session expiry (inactivity or
    an explicit :meth:`clear`) empties the transcript along with memory.
    """

    def __init__(
        self,
        dispatcher: TurnDispatcher,
        sessions: SessionStore,
        memory: ConversationMemoryStore,
    ) -> None:
        self._dispatcher = dispatcher
        self._sessions = sessions
        self._memory = memory
        self._state = ChatState.IDLE
        self._transcript: list[UIMessage] = []
        self._input = ""
        # bumped on every reset; replies from an older epoch are dropped
        self._epoch = 0
        self._listeners: list[Callable[[Conversation], None]] = []
        sessions.add_expiry_listener(self._on_session_expired)

    # -- Observable state --------------------------------------------------------

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    @property
    def memory(self) -> ConversationMemoryStore:
        return self._memory

    @property
    def state(self) -> ChatState:
        return self._state

    @property
    def transcript(self) -> tuple[UIMessage, ...]:
        return tuple(self._transcript)

    @property
    def input(self) -> str:
        return self._input

    @property
    def is_thinking(self) -> bool:
        """True while a reply is pending (the "Thinking..." indicator)."""
        return self._state is ChatState.SENDING

    @property
    def is_initial_view(self) -> bool:
        """True until the first message lands in the transcript."""
        return not self._transcript

    def add_listener(self, callback: Callable[[Conversation], None]) -> None:
        """Call *callback(conversation)* after every state or transcript change."""
        self._listeners.append(callback)

    def set_input(self, text: str) -> None:
        self._input = text

    # -- Transitions -------------------------------------------------------------

    async def submit(self, text: str | None = None) -> TurnResult | None:
        """Submit *text* (or the input buffer) as the next turn.

        Returns the turn's result, or None when nothing was sent: blank
        input, a turn already in flight, or a reply that arrived after the
        conversation was reset.
        """
        raw = self._input if text is None else text
        message = raw.strip()
        if not message:
            return None
        if self._state is ChatState.SENDING:
            logger.info("Submit rejected: a turn is already in flight")
            return None

        # an expired session is replaced (and we are reset) before the turn starts
        session = self._sessions.touch()

        self._transcript.append(UIMessage(role="user", text=message))
        self._input = ""
        self._state = ChatState.SENDING
        epoch = self._epoch
        self._notify()

        try:
            result = await self._dispatcher.send(
                message, session, self._memory.history_for_request()
            )
        finally:
            if self._epoch == epoch and self._state is ChatState.SENDING:
                self._state = ChatState.IDLE

        if self._epoch != epoch:
            logger.info("Dropping reply for a conversation that was reset")
            return None
        if result is None:
            self._notify()
            return None

        if result.success:
            self._transcript.append(UIMessage(role="bot", text=result.output))
            self._memory.append(message, result.output)
            if result.context is not None:
                self._memory.set_context(result.context)
        else:
            self._transcript.append(UIMessage(role="bot", text=result.error or ""))
        self._notify()
        return result

    def reset(self) -> None:
        """Empty the transcript and return to idle."""
        self._epoch += 1
        self._transcript = []
        self._input = ""
        self._state = ChatState.IDLE
        self._notify()

    def clear(self) -> Session:
        """User-initiated clear: start a new session and forget everything."""
        return self._sessions.expire()

    # -- Internal ----------------------------------------------------------------

    def _on_session_expired(self, session: Session) -> None:
        self.reset()

    def _notify(self) -> None:
        for callback in list(self._listeners):
            callback(self)
