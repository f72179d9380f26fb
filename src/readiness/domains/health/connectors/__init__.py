"""Signal connectors — abstraction layer between signal sources and the engine.

Two seams live here:

- ``SignalProvider``: where samples come from (Apple Health export, mock
  generator, ...). Providers feed the signal bank through
  ``connectors.sync``.
- ``SignalStore``: the read-only view the scoring engine consumes. Absence of
  data for a day is returned as an empty list, never as an error.
"""

from __future__ import annotations

from datetime import date
from typing import Protocol, runtime_checkable

from readiness.domains.health.domain_logic.models import (
    Metric,
    ScoreKind,
    ScoreResult,
    SignalSample,
    WorkoutStream,
)


@runtime_checkable
class SignalProvider(Protocol):
    """Abstract interface for signal retrieval from an external source."""

    async def get_samples(self, metric: Metric, start: date, end: date) -> list[SignalSample]:
        """Samples for one metric recorded on days ``start..end`` inclusive."""
        ...

    async def get_workouts(self, start: date, end: date) -> list[WorkoutStream]:
        """Workouts with heart-rate / power streams, used for TRIMP estimates."""
        ...

    def is_connected(self) -> bool:
        """Whether real data is available."""
        ...

    @property
    def data_source(self) -> str:
        """Label for the source: 'apple_health', 'signal_bank', 'mock', ..."""
        ...


@runtime_checkable
class SignalStore(Protocol):
    """Read-only view over stored samples and historical scores."""

    async def get_samples(self, metric: Metric, start: date, end: date) -> list[SignalSample]:
        ...

    async def get_workouts(self, start: date, end: date) -> list[WorkoutStream]:
        ...

    async def get_score_history(
        self, kind: ScoreKind, start: date, end: date
    ) -> list[ScoreResult]:
        """Latest score per day in ``start..end``, newest first."""
        ...
