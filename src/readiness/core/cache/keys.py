"""Cache keys and per-kind time-to-live defaults."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum


class CacheKind(str, Enum):
    SCORE = "score"
    ACTIVITY = "activity"
    HEALTH_METRICS = "health_metrics"
    BASELINE = "baseline"
    STATE = "state"


# Seconds
DEFAULT_TTLS: dict[CacheKind, float] = {
    CacheKind.SCORE: 3600,
    CacheKind.ACTIVITY: 3600,
    CacheKind.HEALTH_METRICS: 300,
    CacheKind.BASELINE: 86400,
    CacheKind.STATE: 3600,
}


@dataclass(frozen=True)
class CacheKey:
    """``(kind, day)`` plus an optional name within the kind.

    The string form is ``kind[:name]:YYYY-MM-DD``, e.g.
    ``"score:recovery:2026-01-15"`` or ``"state:2026-01-15"``.
    """

    kind: CacheKind
    day: date
    name: str = ""

    def __str__(self) -> str:
        parts = [self.kind.value]
        if self.name:
            parts.append(self.name)
        parts.append(self.day.isoformat())
        return ":".join(parts)

    @classmethod
    def parse(cls, value: str) -> CacheKey:
        """Inverse of ``str(key)``.

        Raises:
            ValueError: If ``value`` is not a well-formed key.
        """
        parts = value.split(":")
        if len(parts) not in (2, 3):
            raise ValueError(f"Malformed cache key: {value!r}")
        kind = CacheKind(parts[0])
        name = parts[1] if len(parts) == 3 else ""
        return cls(kind=kind, day=date.fromisoformat(parts[-1]), name=name)

    @classmethod
    def score(cls, name: str, day: date) -> CacheKey:
        return cls(CacheKind.SCORE, day, name)

    @classmethod
    def baseline(cls, metric: str, window_days: int, day: date) -> CacheKey:
        return cls(CacheKind.BASELINE, day, f"{metric}-{window_days}d")

    @classmethod
    def state(cls, day: date) -> CacheKey:
        return cls(CacheKind.STATE, day)
