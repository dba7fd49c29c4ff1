"""
Named storage slots.

A slot is one key holding one serialised document. The history store keeps
its whole collection in a single slot, so any backend that can read and
write a string by key will do.

SQLite schema
─────────────
table: slots
  key        TEXT PRIMARY KEY
  value      TEXT NOT NULL
  updated_at TEXT NOT NULL  (ISO-8601 UTC)
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from studio.errors import PersistenceError

logger = logging.getLogger(__name__)


class SlotStorage:
    """Interface for slot backends."""

    def read(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def write(self, key: str, value: str) -> None:
        raise NotImplementedError


class MemoryStorage(SlotStorage):
    """Process-local slots, used by tests and as a fallback."""

    def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
        self.slots: dict[str, str] = dict(initial or {})

    def read(self, key: str) -> Optional[str]:
        return self.slots.get(key)

    def write(self, key: str, value: str) -> None:
        self.slots[key] = value


class SqliteStorage(SlotStorage):
    """Slots kept in a small SQLite file."""

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self._initialised = False

    @contextmanager
    def _connect(self):
        """Yield a connected sqlite3.Connection, creating the file/dir if needed."""
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(str(self.db_path))
        except (OSError, sqlite3.Error) as exc:
            raise PersistenceError(f"cannot open {self.db_path}: {exc}") from exc
        try:
            if not self._initialised:
                conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS slots (
                        key        TEXT PRIMARY KEY,
                        value      TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    )
                    """
                )
                self._initialised = True
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise PersistenceError(f"slot storage failed at {self.db_path}: {exc}") from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def read(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM slots WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def write(self, key: str, value: str) -> None:
        now = datetime.now(timezone.utc).isoformat()
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO slots (key, value, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
                "updated_at = excluded.updated_at",
                (key, value, now),
            )
        logger.debug("Wrote slot %r (%d bytes) to %s", key, len(value), self.db_path)
