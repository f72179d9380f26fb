"""Row models for the persistence layer."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass
class DataSource:
    """Connector state tracking."""

    id: str
    source_type: str  # 'apple_health', 'mock', 'manual'
    display_name: str
    connected_at: str | None = None
    last_sync: str | None = None
    is_active: bool = True


@dataclass
class CacheEntry:
    """A cached payload plus the moment it was written.

    Freshness is decided by the reader against the TTL of the entry's kind,
    so the same entry can be served fresh or as a stale fallback.
    """

    key: str
    kind: str
    day: str
    payload: Any
    stored_at: datetime

    def age_seconds(self, now: datetime) -> float:
        return (now - self.stored_at).total_seconds()

    def is_fresh(self, now: datetime, ttl_seconds: float) -> bool:
        return self.age_seconds(now) < ttl_seconds
