"""Presentation preferences persisted alongside the session."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from halochat.storage import KeyValueStore

logger = logging.getLogger(__name__)

DARK_MODE_KEY = "darkMode"


class Preferences:
    """Reads and writes UI preferences through the shared key-value store."""

    def __init__(self, storage: KeyValueStore) -> None:
        self._storage = storage

    @property
    def dark_mode(self) -> bool:
        return self._storage.get(DARK_MODE_KEY) is True

    @dark_mode.setter
    def dark_mode(self, enabled: bool) -> None:
        self._storage.set(DARK_MODE_KEY, bool(enabled))

    def toggle_dark_mode(self) -> bool:
        """Flip the dark-mode preference. Returns the new value."""
        self.dark_mode = not self.dark_mode
        logger.debug("Dark mode %s", "on" if self.dark_mode else "off")
        return self.dark_mode
