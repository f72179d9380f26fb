"""Two-tier cache with per-kind TTLs and single-flight computation.

Reads try the in-memory tier, then the durable tier (promoting hits back to
memory); writes go to both. ``get_or_compute`` guarantees at most one
computation per key at a time: concurrent callers for the same key await the
same task. A failed computation is never stored.

The durable tier is best-effort. Its errors are logged and treated as a miss
so a broken database file degrades to memory-only caching.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from readiness.core.cache.durable import CacheError, DurableCache
from readiness.core.cache.keys import DEFAULT_TTLS, CacheKey, CacheKind
from readiness.core.cache.memory import MemoryCache
from readiness.core.storage.models import CacheEntry

logger = logging.getLogger(__name__)


@dataclass
class _Flight:
    task: asyncio.Future
    waiters: int = 0


class TieredCache:
    """Memory + durable cache façade used by the coordinator.

    Usage::

        cache = TieredCache(MemoryCache(), DurableCache(db, encryptor))
        payload = await cache.get_or_compute(
            CacheKey.score("sleep", day), compute_sleep_payload
        )
    """

    def __init__(
        self,
        memory: MemoryCache | None = None,
        durable: DurableCache | None = None,
        *,
        ttls: dict[CacheKind, float] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._memory = memory or MemoryCache()
        self._durable = durable
        self._ttls = {**DEFAULT_TTLS, **(ttls or {})}
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._inflight: dict[str, _Flight] = {}

    @property
    def memory(self) -> MemoryCache:
        return self._memory

    @property
    def durable(self) -> DurableCache | None:
        return self._durable

    def ttl_for(self, kind: CacheKind) -> float:
        return self._ttls[kind]

    def in_flight(self, key: CacheKey) -> bool:
        return str(key) in self._inflight

    # ------------------------------------------------------------------
    # Tier access
    # ------------------------------------------------------------------

    def _durable_get(self, key: CacheKey) -> CacheEntry | None:
        if self._durable is None:
            return None
        try:
            return self._durable.get(key)
        except CacheError as exc:
            logger.warning("Durable cache read failed, treating as miss: %s", exc)
            return None

    def _durable_set(self, key: CacheKey, payload: Any, stored_at: datetime) -> None:
        if self._durable is None:
            return
        try:
            self._durable.set(key, payload, stored_at)
        except CacheError as exc:
            logger.warning("Durable cache write failed: %s", exc)

    async def get(self, key: CacheKey) -> Any | None:
        """Return the cached payload if it is within its TTL, else ``None``."""
        now = self._clock()
        ttl = self.ttl_for(key.kind)

        entry = self._memory.get(key)
        if entry is not None and entry.is_fresh(now, ttl):
            return entry.payload

        entry = self._durable_get(key)
        if entry is not None and entry.is_fresh(now, ttl):
            self._memory.set(key, entry.payload, entry.stored_at)
            return entry.payload
        return None

    async def get_stale(self, key: CacheKey) -> CacheEntry | None:
        """Return the newest entry for ``key`` regardless of age.

        Used as the fallback when an upstream read fails.
        """
        candidates = [e for e in (self._memory.get(key), self._durable_get(key)) if e is not None]
        if not candidates:
            return None
        return max(candidates, key=lambda e: e.stored_at)

    async def set(self, key: CacheKey, payload: Any) -> None:
        stored_at = self._clock()
        self._memory.set(key, payload, stored_at)
        self._durable_set(key, payload, stored_at)

    async def invalidate(self, key: CacheKey) -> None:
        self._memory.invalidate(key)
        if self._durable is not None:
            try:
                self._durable.invalidate(key)
            except CacheError as exc:
                logger.warning("Durable cache invalidate failed: %s", exc)

    async def clear(self, kind: CacheKind | None = None) -> None:
        self._memory.clear(kind)
        if self._durable is not None:
            try:
                self._durable.clear(kind)
            except CacheError as exc:
                logger.warning("Durable cache clear failed: %s", exc)

    # ------------------------------------------------------------------
    # Single-flight
    # ------------------------------------------------------------------

    async def _compute_and_store(
        self, key: CacheKey, compute: Callable[[], Awaitable[Any]]
    ) -> Any:
        value = await compute()
        if value is not None:
            await self.set(key, value)
        return value

    async def get_or_compute(
        self,
        key: CacheKey,
        compute: Callable[[], Awaitable[Any]],
        *,
        force: bool = False,
    ) -> Any:
        """Return the cached payload, computing it at most once per key.

        Args:
            key: Cache key.
            compute: Coroutine factory producing a JSON-serializable payload.
            force: Skip the fresh-cache check. A computation already in
                flight for the key is always joined, forced or not.

        Raises:
            Whatever ``compute`` raises; the failure is not cached.
        """
        name = str(key)
        flight = self._inflight.get(name)
        if flight is None and not force:
            cached = await self.get(key)
            if cached is not None:
                return cached
            flight = self._inflight.get(name)
        if flight is None:
            task = asyncio.ensure_future(self._compute_and_store(key, compute))
            flight = _Flight(task)
            self._inflight[name] = flight
            task.add_done_callback(lambda t, n=name, f=flight: self._finish(n, f, t))
        else:
            logger.debug("Joining in-flight computation for %s", name)

        flight.waiters += 1
        try:
            return await asyncio.shield(flight.task)
        except asyncio.CancelledError:
            # Last interested caller gone: stop the computation.
            if flight.waiters == 1 and not flight.task.done():
                flight.task.cancel()
            raise
        finally:
            flight.waiters -= 1

    def _finish(self, name: str, flight: _Flight, task: asyncio.Future) -> None:
        if self._inflight.get(name) is flight:
            del self._inflight[name]
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Computation for %s failed: %s", name, task.exception())
