"""Local persistence for chat sessions.

Conversations are kept as one JSON array under a single key of a
string-valued key-value store, the way a browser keeps them in localStorage.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Protocol

from pydantic import TypeAdapter, ValidationError

from .config import STORAGE_KEY
from .exceptions import CorruptSnapshotError, StorageError
from .models import Conversation

logger = logging.getLogger(__name__)

_conversation_list = TypeAdapter(list[Conversation])


class KeyValueStore(Protocol):
    def get_item(self, key: str) -> str | None: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class SqliteKeyValueStore:
    """SQLite-backed key-value store."""

    def __init__(self, db_path: Path):
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(db_path))
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._migrate()

    def _migrate(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );
        """)
        self.conn.commit()

    def get_item(self, key: str) -> str | None:
        row = self.conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set_item(self, key: str, value: str) -> None:
        try:
            self.conn.execute(
                "INSERT INTO kv (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )
            self.conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Could not write {key!r}: {e}") from e

    def remove_item(self, key: str) -> None:
        try:
            self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            self.conn.commit()
        except sqlite3.Error as e:
            raise StorageError(f"Could not remove {key!r}: {e}") from e

    def close(self):
        self.conn.close()


class MemoryKeyValueStore:
    """Dict-backed key-value store for tests and throwaway sessions."""

    def __init__(self, items: dict[str, str] | None = None):
        self.items: dict[str, str] = dict(items or {})

    def get_item(self, key: str) -> str | None:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.items[key] = value

    def remove_item(self, key: str) -> None:
        self.items.pop(key, None)

    def close(self):
        pass


class SessionStore:
    """Durable list of conversations.

    An empty list is never written: the key is removed instead so a later
    load reports "no saved state".
    """

    def __init__(self, kv: KeyValueStore, key: str = STORAGE_KEY, strict: bool = False):
        self.kv = kv
        self.key = key
        self.strict = strict
        self.backup_key = f"{key}.unreadable"

    def load(self) -> list[Conversation] | None:
        """Return the saved conversations, or None when nothing usable is stored.

        A snapshot that fails to parse raises CorruptSnapshotError in strict
        mode; otherwise it is copied to ``backup_key``, logged and treated as
        absent, so the next save may overwrite the original key.
        """
        raw = self.kv.get_item(self.key)
        if raw is None:
            return None
        try:
            conversations = _conversation_list.validate_json(raw)
        except ValidationError as e:
            if self.strict:
                raise CorruptSnapshotError(f"Saved chat sessions are unreadable: {e}") from e
            self.kv.set_item(self.backup_key, raw)
            logger.warning(
                "Ignoring unreadable chat sessions under %r (copied to %r): %s",
                self.key,
                self.backup_key,
                e,
            )
            return None
        if not conversations:
            return None
        logger.debug("Loaded %d conversations", len(conversations))
        return conversations

    def save(self, conversations: list[Conversation] | tuple[Conversation, ...]):
        """Persist the full conversation list."""
        if not conversations:
            self.clear()
            return
        payload = _conversation_list.dump_json(list(conversations)).decode("utf-8")
        self.kv.set_item(self.key, payload)

    def clear(self):
        self.kv.remove_item(self.key)
        logger.debug("Cleared saved chat sessions")
