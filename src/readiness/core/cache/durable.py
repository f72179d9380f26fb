"""Tier 2: durable cache in the signal bank's ``cache_entries`` table.

Payloads are JSON-serialized and Fernet-encrypted with the same
``FieldEncryptor`` the repository uses, so a cached score is no more exposed
than the score history itself.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Any

from readiness.core.cache.keys import CacheKey, CacheKind
from readiness.core.storage.database import SignalDatabase
from readiness.core.storage.encryption import EncryptionError, FieldEncryptor
from readiness.core.storage.models import CacheEntry

logger = logging.getLogger(__name__)


class CacheError(Exception):
    """Raised when the durable cache cannot be read or written."""


class DurableCache:
    """Encrypted SQLite-backed cache tier.

    Usage::

        durable = DurableCache(db, encryptor)
        durable.set(CacheKey.state(day), state.to_dict(), stored_at=now)
        entry = durable.get(CacheKey.state(day))
    """

    def __init__(self, database: SignalDatabase, encryptor: FieldEncryptor) -> None:
        self._db = database
        self._enc = encryptor

    def get(self, key: CacheKey) -> CacheEntry | None:
        """Return the stored entry regardless of age, or ``None``.

        Raises:
            CacheError: If the row can't be read or decrypted.
        """
        try:
            row = self._db.connection.execute(
                "SELECT * FROM cache_entries WHERE cache_key = ?", (str(key),)
            ).fetchone()
            if row is None:
                return None
            payload = self._enc.decrypt(row["payload_enc"])
        except (sqlite3.Error, EncryptionError) as exc:
            raise CacheError(f"Failed to read cache entry {key}: {exc}") from exc

        return CacheEntry(
            key=row["cache_key"],
            kind=row["kind"],
            day=row["day"],
            payload=payload,
            stored_at=datetime.fromisoformat(row["stored_at"]),
        )

    def set(self, key: CacheKey, payload: Any, stored_at: datetime) -> None:
        """Insert or replace the entry for ``key``.

        Raises:
            CacheError: If the payload can't be encrypted or the write fails.
        """
        try:
            token = self._enc.encrypt(payload)
            conn = self._db.connection
            conn.execute(
                """INSERT OR REPLACE INTO cache_entries
                   (cache_key, kind, day, payload_enc, stored_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (str(key), key.kind.value, key.day.isoformat(), token, stored_at.isoformat()),
            )
            conn.commit()
        except (sqlite3.Error, EncryptionError) as exc:
            raise CacheError(f"Failed to write cache entry {key}: {exc}") from exc

    def invalidate(self, key: CacheKey) -> bool:
        try:
            conn = self._db.connection
            cursor = conn.execute("DELETE FROM cache_entries WHERE cache_key = ?", (str(key),))
            conn.commit()
        except sqlite3.Error as exc:
            raise CacheError(f"Failed to invalidate cache entry {key}: {exc}") from exc
        return cursor.rowcount > 0

    def clear(self, kind: CacheKind | None = None) -> int:
        """Delete all entries, or all entries of one kind.

        Returns:
            Number of rows deleted.
        """
        try:
            conn = self._db.connection
            if kind is None:
                cursor = conn.execute("DELETE FROM cache_entries")
            else:
                cursor = conn.execute("DELETE FROM cache_entries WHERE kind = ?", (kind.value,))
            conn.commit()
        except sqlite3.Error as exc:
            raise CacheError(f"Failed to clear cache: {exc}") from exc
        logger.info("Cleared %d durable cache entries", cursor.rowcount)
        return cursor.rowcount

    def count(self) -> int:
        return self._db.connection.execute("SELECT COUNT(*) FROM cache_entries").fetchone()[0]
