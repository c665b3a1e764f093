"""Key-value persistence for session and conversation state.

The core never talks to a concrete storage substrate directly. Stores receive
something that satisfies :class:`KeyValueStore` and read/write JSON-safe
values through it:

- ``InMemoryStorage`` — process-local dict, used in tests and when no
  storage path is configured.
- ``JsonFileStorage`` — a single JSON file on disk, rewritten synchronously
  on every ``set()`` so a restart resumes where it left off.
"""

from __future__ import annotations

import json
import logging
import os
from typing import TYPE_CHECKING, Any, Protocol

from halochat.config import settings

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    """Minimal persistence capability injected into the stores."""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...


def _encode(key: str, value: Any) -> str:
    try:
        return json.dumps(value)
    except (TypeError, ValueError) as exc:
        msg = f"Value for {key!r} is not JSON-serializable"
        raise ValueError(msg) from exc


class InMemoryStorage:
    """Dict-backed store. Values are kept as JSON text, like browser storage."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = _encode(key, value)


class JsonFileStorage:
    """Single-file JSON store.

    Writes go to a sibling temp file first and are then swapped in with
    ``os.replace`` so a crash mid-write never leaves a truncated file.
    A file that cannot be parsed is logged and treated as empty.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _read_all(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text("utf-8"))
        except (OSError, ValueError):
            logger.warning("Storage file %s is unreadable, starting empty", self._path)
            return {}
        if not isinstance(data, dict):
            logger.warning("Storage file %s does not hold an object, starting empty", self._path)
            return {}
        return data

    def get(self, key: str) -> Any | None:
        return self._read_all().get(key)

    def set(self, key: str, value: Any) -> None:
        _encode(key, value)
        data = self._read_all()
        data[key] = value
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(self._path.name + ".tmp")
        tmp.write_text(json.dumps(data, indent=2), "utf-8")
        os.replace(tmp, self._path)


def open_storage(path: Path | None = None) -> KeyValueStore:
    """Return the storage backend selected by *path* or settings.

    An explicit *path* wins; otherwise ``STORAGE_PATH`` is used, and an empty
    ``STORAGE_PATH`` falls back to in-memory storage.
    """
    target = path or settings.get_storage_path()
    if target is None:
        logger.info("Storage: in-memory (STORAGE_PATH is empty)")
        return InMemoryStorage()
    logger.info("Storage: %s", target)
    return JsonFileStorage(target)
