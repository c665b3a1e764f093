"""Conversation factory: wires settings, storage, stores, and dispatcher."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from halochat.chat import Conversation
from halochat.dispatcher import TurnDispatcher
from halochat.memory.store import ConversationMemoryStore
from halochat.session import SessionStore
from halochat.storage import open_storage

if TYPE_CHECKING:
    from collections.abc import Callable

    from halochat.storage import KeyValueStore

logger = logging.getLogger(__name__)


def create_conversation(
    storage: KeyValueStore | None = None,
    dispatcher: TurnDispatcher | None = None,
    *,
    clock: Callable[[], float] = time.time,
) -> Conversation:
    """Build a ready-to-use Conversation bound to the resumed or new session.

    *storage* and *dispatcher* default to the ones described by settings.
    """
    storage = storage if storage is not None else open_storage()
    sessions = SessionStore(storage, clock=clock)
    memory = ConversationMemoryStore(storage, clock=clock)
    memory.track(sessions)
    dispatcher = dispatcher or TurnDispatcher()
    conversation = Conversation(dispatcher, sessions, memory)
    logger.info(
        "Conversation ready: session=%s mode=%s history=%d",
        sessions.current.id,
        dispatcher.mode,
        len(memory),
    )
    return conversation
