"""Signal bank store — reads from the SQLite signal repository.

Implements both ``SignalStore`` (what the coordinator consumes) and
``SignalProvider`` (so the bank can sit inside a composite provider).
"""

from __future__ import annotations

import logging
from datetime import date

from readiness.core.storage.repository import SignalRepository
from readiness.domains.health.domain_logic.models import (
    Metric,
    ScoreKind,
    ScoreResult,
    SignalSample,
    WorkoutStream,
)

logger = logging.getLogger(__name__)


class SignalBankStore:
    """SignalStore backed by the encrypted signal bank.

    Usage::

        store = SignalBankStore(repository)
        hrv = await store.get_samples(Metric.HRV, start, end)
    """

    def __init__(self, repository: SignalRepository) -> None:
        self._repo = repository

    async def get_samples(self, metric: Metric, start: date, end: date) -> list[SignalSample]:
        return self._repo.get_samples(metric, start, end)

    async def get_workouts(self, start: date, end: date) -> list[WorkoutStream]:
        return self._repo.get_workouts(start, end)

    async def get_score_history(
        self, kind: ScoreKind, start: date, end: date
    ) -> list[ScoreResult]:
        span = (end - start).days + 1
        return self._repo.get_score_history(kind, start=start, end=end, limit=max(span, 1))

    def is_connected(self) -> bool:
        """The bank is connected once it holds any sample."""
        return self._repo.count_samples() > 0

    @property
    def data_source(self) -> str:
        return "signal_bank"
