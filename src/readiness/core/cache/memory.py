"""Tier 1: in-process cache, valid until the process exits."""

from __future__ import annotations

import copy
from datetime import datetime
from typing import Any

from readiness.core.cache.keys import CacheKey, CacheKind
from readiness.core.storage.models import CacheEntry


class MemoryCache:
    """Dictionary of cache entries keyed by ``str(CacheKey)``.

    Payloads are deep-copied on write so callers can't mutate a cached value
    after storing it. Expiry is decided by the reader.
    """

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}

    def get(self, key: CacheKey) -> CacheEntry | None:
        return self._entries.get(str(key))

    def set(self, key: CacheKey, payload: Any, stored_at: datetime) -> CacheEntry:
        entry = CacheEntry(
            key=str(key),
            kind=key.kind.value,
            day=key.day.isoformat(),
            payload=copy.deepcopy(payload),
            stored_at=stored_at,
        )
        self._entries[entry.key] = entry
        return entry

    def invalidate(self, key: CacheKey) -> bool:
        return self._entries.pop(str(key), None) is not None

    def clear(self, kind: CacheKind | None = None) -> None:
        if kind is None:
            self._entries.clear()
            return
        for name in [n for n, e in self._entries.items() if e.kind == kind.value]:
            del self._entries[name]

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return str(key) in self._entries
