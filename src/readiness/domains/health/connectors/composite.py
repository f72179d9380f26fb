"""Composite signal provider — merges multiple sources with priority.

Priority order is the list order, e.g. apple_health > signal_bank > mock.
Each method queries sources in priority order and returns the first
non-empty result, so wearable data takes precedence over stored entries and
mock data is only the last resort.
"""

from __future__ import annotations

import logging
from datetime import date

from readiness.domains.health.connectors import SignalProvider
from readiness.domains.health.domain_logic.models import Metric, SignalSample, WorkoutStream

logger = logging.getLogger(__name__)


class CompositeSignalProvider:
    """Merges multiple SignalProviders with priority ordering.

    Usage::

        composite = CompositeSignalProvider([
            apple_health_provider,  # Highest priority
            mock_provider,          # Fallback
        ])
        hrv = await composite.get_samples(Metric.HRV, start, end)
    """

    def __init__(self, providers: list[SignalProvider]) -> None:
        """Initialize with providers in priority order (highest first).

        Raises:
            ValueError: If ``providers`` is empty.
        """
        if not providers:
            raise ValueError("At least one provider is required")
        self._providers = providers

    async def get_samples(self, metric: Metric, start: date, end: date) -> list[SignalSample]:
        """Return samples from the highest-priority connected provider with data."""
        for provider in self._providers:
            if not provider.is_connected():
                continue
            result = await provider.get_samples(metric, start, end)
            if result:
                logger.debug("%s samples served by %s", metric.value, provider.data_source)
                return result
        return []

    async def get_workouts(self, start: date, end: date) -> list[WorkoutStream]:
        """Return workouts from the highest-priority connected provider with data."""
        for provider in self._providers:
            if not provider.is_connected():
                continue
            result = await provider.get_workouts(start, end)
            if result:
                return result
        return []

    def is_connected(self) -> bool:
        """True if any provider is connected."""
        return any(p.is_connected() for p in self._providers)

    @property
    def data_source(self) -> str:
        """Return the data source of the first connected provider."""
        for provider in self._providers:
            if provider.is_connected():
                return provider.data_source
        return self._providers[-1].data_source

    @property
    def active_sources(self) -> list[str]:
        return [p.data_source for p in self._providers if p.is_connected()]
