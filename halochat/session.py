"""Session identity: creation, persistence, and inactivity expiry."""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from halochat.config import settings

if TYPE_CHECKING:
    from collections.abc import Callable

    from halochat.storage import KeyValueStore

logger = logging.getLogger(__name__)

SESSION_STORAGE_KEY = "chatSessionData"
SESSION_ID_PREFIX = "session_"


def now_ms(clock: Callable[[], float] = time.time) -> int:
    """Current time from *clock* as integer epoch milliseconds."""
    return int(clock() * 1000)


@dataclass(frozen=True)
class Session:
    """An active conversation identity.

    Attributes:
        id: Opaque token, ``"session_"`` followed by a UUID4.
        last_activity: Epoch milliseconds of the last observed activity.
    """

    id: str
    last_activity: int

    @classmethod
    def new(cls, timestamp: int) -> Session:
        return cls(id=f"{SESSION_ID_PREFIX}{uuid.uuid4()}", last_activity=timestamp)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "lastActivity": self.last_activity}

    @classmethod
    def from_dict(cls, data: Any) -> Session:
        """Parse a stored record. Raises ``ValueError`` if malformed."""
        if not isinstance(data, dict):
            msg = f"Session record must be an object, got {type(data).__name__}"
            raise ValueError(msg)
        session_id = data.get("id")
        last_activity = data.get("lastActivity")
        if not isinstance(session_id, str) or not session_id:
            raise ValueError("Session record has no id")
        if isinstance(last_activity, bool) or not isinstance(last_activity, int | float):
            raise ValueError("Session record has no numeric lastActivity")
        return cls(id=session_id, last_activity=int(last_activity))


class SessionStore:
    """Owns the single active session for one storage scope.

    Every create/touch/expire writes through to *storage* synchronously, so a
    restart within the inactivity window resumes the same session. Components
    that must forget the conversation when the session is replaced register
    with :meth:`add_expiry_listener`.
    """

    def __init__(
        self,
        storage: KeyValueStore,
        *,
        timeout_seconds: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._storage = storage
        self._timeout_ms = (timeout_seconds or settings.session_timeout_seconds) * 1000
        self._clock = clock
        self._current: Session | None = None
        self._listeners: list[Callable[[Session], None]] = []

    @property
    def current(self) -> Session:
        """The active session, loaded from storage on first access."""
        if self._current is None:
            return self.load_or_create()
        return self._current

    def add_expiry_listener(self, callback: Callable[[Session], None]) -> None:
        """Call *callback(new_session)* whenever a new session replaces the old one."""
        self._listeners.append(callback)

    def is_expired(self, session: Session) -> bool:
        return now_ms(self._clock) - session.last_activity >= self._timeout_ms

    # -- Lifecycle ---------------------------------------------------------------

    def load_or_create(self) -> Session:
        """Resume the stored session if still live, otherwise start a new one."""
        stored = self._read()
        if stored is not None and not self.is_expired(stored):
            if self._current is None or self._current.id != stored.id:
                logger.info("Resumed session %s", stored.id)
            self._current = stored
            return stored
        if stored is None:
            return self._create()
        logger.info("Stored session %s expired", stored.id)
        return self.expire()

    def touch(self, session: Session | None = None) -> Session:
        """Record user activity on the active session.

        A *session* that has since been replaced is never revived; the touch
        lands on the active session. If that has already outlived the
        inactivity window this acts as an expiry check and returns the
        replacement session instead.
        """
        current = self.current
        if session is not None and session.id != current.id:
            logger.debug("Ignoring touch for replaced session %s", session.id)
        if self.is_expired(current):
            logger.info("Activity on expired session %s", current.id)
            return self.expire()
        updated = Session(id=current.id, last_activity=now_ms(self._clock))
        self._write(updated)
        return updated

    def expire(self) -> Session:
        """Replace the active session with a fresh one and notify listeners."""
        previous = self._current
        session = Session.new(now_ms(self._clock))
        self._write(session)
        logger.info(
            "Session %s replaced by %s", previous.id if previous else "(stored)", session.id
        )
        for callback in list(self._listeners):
            callback(session)
        return session

    def _create(self) -> Session:
        """Mint and persist a first session. Nothing is replaced, so no listeners fire."""
        session = Session.new(now_ms(self._clock))
        self._write(session)
        logger.info("Created session %s", session.id)
        return session

    def check_expiry(self) -> bool:
        """Expire the active session if the inactivity window has elapsed."""
        if self._current is None:
            stored = self._read()
            session = self.load_or_create()
            return stored is not None and stored.id != session.id
        if not self.is_expired(self._current):
            return False
        logger.info("Session %s idle past timeout", self._current.id)
        self.expire()
        return True

    # -- Persistence -------------------------------------------------------------

    def _read(self) -> Session | None:
        raw = self._storage.get(SESSION_STORAGE_KEY)
        if raw is None:
            return None
        try:
            return Session.from_dict(raw)
        except ValueError as exc:
            logger.warning("Discarding corrupt session record: %s", exc)
            return None

    def _write(self, session: Session) -> None:
        self._storage.set(SESSION_STORAGE_KEY, session.to_dict())
        self._current = session
