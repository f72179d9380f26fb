"""Error taxonomy for the scoring engine.

Insufficient history is not an error: it is encoded in ``Baseline`` and
``ScoreStatus``. Validation problems are recovered locally and recorded as
``ValidationFailure`` entries on the result. Only upstream failures and
ordering violations are raised.
"""

from __future__ import annotations

from dataclasses import dataclass


class ReadinessError(Exception):
    """Base class for scoring engine errors."""


class UpstreamUnavailable(ReadinessError):
    """Raised when a signal or activity source fails or times out."""

    def __init__(self, source: str, reason: str) -> None:
        super().__init__(f"{source} unavailable: {reason}")
        self.source = source
        self.reason = reason


class InconsistentStateError(ReadinessError):
    """Raised when a dependent score is requested without its prerequisite.

    Recovery must always receive the Sleep result computed for the same day.
    """


@dataclass(frozen=True)
class ValidationFailure:
    """An input outside physiological bounds that was replaced or ignored."""

    field: str
    value: float | None
    substituted: float | None
    bounds: tuple[float, float]

    def describe(self) -> str:
        lo, hi = self.bounds
        if self.substituted is None:
            return f"{self.field}={self.value} outside {lo:g}-{hi:g}; ignored"
        return (
            f"{self.field}={self.value} outside {lo:g}-{hi:g}; "
            f"using default {self.substituted:g}"
        )
